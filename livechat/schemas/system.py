from typing import Optional

from pydantic import BaseModel


class AppGroup(BaseModel):
    name: str
    environment: str
    log_level: str
    port: int


class DatabaseGroup(BaseModel):
    database_host: Optional[str] = None
    database_driver: Optional[str] = None
    pool_size: int
    max_overflow: int


class RealtimeGroup(BaseModel):
    backend: str
    redis_host: str
    redis_port: int
    redis_namespace: str
    reconnect_base_delay: float
    reconnect_max_delay: float
    max_reconnect_attempts: int


class MessagingGroup(BaseModel):
    typing_idle_timeout: float
    typing_stale_after: float
    status_max_attempts: int
    status_retry_base_delay: float
    status_batch_delay: float
    conversations_page_size: int


class AuthGroup(BaseModel):
    configured: bool
    base_url: Optional[str] = None


class SystemSettingsGrouped(BaseModel):
    app: AppGroup
    database: DatabaseGroup
    realtime: RealtimeGroup
    messaging: MessagingGroup
    auth: AuthGroup
