"""Message CRUD, scope queries, forward-only status updates and conversation pages."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import case, func
from sqlalchemy.orm import Query, Session as DBSession

from livechat.core.scope_key import ScopeKey
from livechat.models.message import Message
from livechat.schemas.conversation import ConversationSummary
from livechat.schemas.message import Message as MessageRead
from livechat.schemas.message import MessageCreate, MessageStatus


def visitor_actor_column():
    """SQL expression for the visitor-side actor id of a row."""
    return case(
        (Message.is_admin.is_(True), Message.recipient_id),
        else_=func.coalesce(Message.sender_id, Message.session_id),
    )


class MessageService:
    def __init__(self, db: DBSession) -> None:
        self.db = db

    def create_message(self, data: MessageCreate) -> Message:
        dump = data.model_dump()
        dump["message_status"] = data.message_status.value
        msg = Message(**dump)
        self.db.add(msg)
        self.db.commit()
        self.db.refresh(msg)
        return msg

    def get_message(self, message_id: str) -> Optional[Message]:
        return self.db.query(Message).filter(Message.id == message_id).first()

    def get_messages_query(self, scope: ScopeKey) -> Query:
        query = self.db.query(Message)
        if scope.kind == "user":
            query = query.filter(
                (Message.sender_id == scope.actor_id)
                | (Message.recipient_id == scope.actor_id)
            )
        elif scope.kind == "session":
            query = query.filter(
                (Message.session_id == scope.actor_id)
                | (Message.recipient_id == scope.actor_id)
            )
        return query.order_by(Message.created_at.asc())

    def get_messages_for_scope(
        self, scope: ScopeKey, limit: Optional[int] = None
    ) -> List[Message]:
        query = self.get_messages_query(scope)
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def update_status(
        self, message_id: str, status: MessageStatus
    ) -> Tuple[Optional[Message], bool]:
        """
        Move a message's status forward. Returns (message, applied).

        The WHERE clause only matches rows whose current status ranks lower,
        so a concurrent or stale request can never regress the status.
        """
        lower = [s.value for s in MessageStatus if s.rank < status.rank]
        applied = 0
        if lower:
            applied = (
                self.db.query(Message)
                .filter(Message.id == message_id, Message.message_status.in_(lower))
                .update(
                    {
                        Message.message_status: status.value,
                        Message.updated_at: datetime.now(timezone.utc),
                    },
                    synchronize_session=False,
                )
            )
            self.db.commit()
        msg = self.get_message(message_id)
        if msg is not None and applied:
            self.db.refresh(msg)
        return msg, bool(applied)

    def get_conversation_page(
        self, page: int, page_size: int
    ) -> Tuple[List[ConversationSummary], int]:
        """Distinct visitor conversations ordered by most recent message."""
        actor = visitor_actor_column()
        last_at = func.max(Message.created_at)
        grouped = (
            self.db.query(actor.label("actor_id"), last_at.label("last_at"))
            .filter(actor.isnot(None))
            .group_by(actor)
        )
        total = grouped.count()
        rows = (
            grouped.order_by(last_at.desc())
            .offset((max(page, 1) - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return [self._summarize(row.actor_id) for row in rows], total

    def actor_kind(self, actor_id: str) -> str:
        """"user" if the actor has ever sent as a signed-in user, else "session"."""
        is_user = (
            self.db.query(Message.id)
            .filter(Message.sender_id == actor_id, Message.is_admin.is_(False))
            .first()
            is not None
        )
        return "user" if is_user else "session"

    def _summarize(self, actor_id: str) -> ConversationSummary:
        actor = visitor_actor_column()
        in_thread = self.db.query(Message).filter(actor == actor_id)
        last = in_thread.order_by(Message.created_at.desc()).first()
        first = in_thread.order_by(Message.created_at.asc()).first()
        unread_ids = [
            row.id
            for row in self.db.query(Message.id)
            .filter(
                actor == actor_id,
                Message.is_admin.is_(False),
                Message.message_status != MessageStatus.READ.value,
            )
            .order_by(Message.created_at.asc())
            .all()
        ]
        return ConversationSummary(
            actor_id=actor_id,
            actor_kind=self.actor_kind(actor_id),
            last_message=MessageRead.model_validate(last),
            first_message_at=first.created_at,
            unread_ids=unread_ids,
        )
