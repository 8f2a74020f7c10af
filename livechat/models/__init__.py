from livechat.models.message import Message
from livechat.models.profile import Profile

__all__ = [
    "Message",
    "Profile",
]
