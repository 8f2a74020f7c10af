"""Store and identity provider adapters."""

from livechat.adapters.base import BaseMessageStore
from livechat.adapters.identity_provider import BaseIdentityProvider, GoTrueIdentityProvider
from livechat.adapters.sql_store import SqlMessageStore
