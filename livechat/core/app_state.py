from typing import Optional

from livechat.adapters.identity_provider import BaseIdentityProvider, GoTrueIdentityProvider
from livechat.channels import RealtimeClient, build_realtime_client
from livechat.config import Settings


class AppState:
    def __init__(self) -> None:
        self.settings: Optional[Settings] = None
        self.realtime: Optional[RealtimeClient] = None
        self.identity_provider: Optional[BaseIdentityProvider] = None

    def configure(self, settings: Settings) -> None:
        self.settings = settings
        self.realtime = build_realtime_client(settings)
        if settings.auth_base_url and settings.auth_api_key:
            self.identity_provider = GoTrueIdentityProvider(
                settings.auth_base_url, settings.auth_api_key
            )
        else:
            self.identity_provider = None

    async def shutdown(self) -> None:
        if self.realtime is not None:
            await self.realtime.close()


state = AppState()
