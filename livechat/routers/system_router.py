"""Liveness and a read-only settings view for admins."""

from fastapi import APIRouter, Depends

from livechat.config import Settings, get_settings
from livechat.core.identity import AuthenticatedIdentity
from livechat.routers.utils.dependencies import require_admin
from livechat.schemas.system import (
    AppGroup,
    AuthGroup,
    DatabaseGroup,
    MessagingGroup,
    RealtimeGroup,
    SystemSettingsGrouped,
)

system_router = APIRouter(tags=["System"])


@system_router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@system_router.get("/system/settings", response_model=SystemSettingsGrouped)
def get_system_settings(
    _admin: AuthenticatedIdentity = Depends(require_admin),
    s: Settings = Depends(get_settings),
) -> SystemSettingsGrouped:
    """Return grouped, non-sensitive configuration for troubleshooting."""
    # Host and driver only; credentials never leave the process
    database_host = None
    database_driver = None
    if s.database_url:
        url_obj = s.database_url_obj
        database_host = url_obj.host
        database_driver = url_obj.get_backend_name()

    return SystemSettingsGrouped(
        app=AppGroup(
            name=s.app_name,
            environment=s.environment,
            log_level=s.log_level,
            port=s.port,
        ),
        database=DatabaseGroup(
            database_host=database_host,
            database_driver=database_driver,
            pool_size=s.database_pool_size,
            max_overflow=s.database_max_overflow,
        ),
        realtime=RealtimeGroup(
            backend=s.realtime_backend,
            redis_host=s.redis_host,
            redis_port=s.redis_port,
            redis_namespace=s.redis_namespace,
            reconnect_base_delay=s.realtime_reconnect_base_delay,
            reconnect_max_delay=s.realtime_reconnect_max_delay,
            max_reconnect_attempts=s.realtime_max_reconnect_attempts,
        ),
        messaging=MessagingGroup(
            typing_idle_timeout=s.typing_idle_timeout,
            typing_stale_after=s.typing_stale_after,
            status_max_attempts=s.status_max_attempts,
            status_retry_base_delay=s.status_retry_base_delay,
            status_batch_delay=s.status_batch_delay,
            conversations_page_size=s.conversations_page_size,
        ),
        auth=AuthGroup(
            configured=bool(s.auth_base_url and s.auth_api_key),
            base_url=s.auth_base_url,
        ),
    )
