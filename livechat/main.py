from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi_pagination import add_pagination

from livechat.channels import InMemoryRealtimeClient
from livechat.config import get_settings
from livechat.core.app_state import state
from livechat.infra.logging_config import configure_logging, get_logger
from livechat.routers.auth_router import auth_router
from livechat.routers.conversations_router import conversations_router
from livechat.routers.messages_router import messages_router
from livechat.routers.realtime_router import realtime_router
from livechat.routers.system_router import system_router

logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await state.shutdown()
    logger.info("Realtime client closed")


def create_app(testing: bool = False) -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)
    state.configure(settings)
    if testing:
        state.realtime = InMemoryRealtimeClient()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)

    if settings.cors_origin_list:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origin_list,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(messages_router)
    app.include_router(conversations_router)
    app.include_router(auth_router)
    app.include_router(realtime_router)
    app.include_router(system_router)
    add_pagination(app)

    logger.info(
        "Started %s (env=%s, realtime=%s)",
        settings.app_name,
        settings.environment,
        "memory" if testing else settings.realtime_backend,
    )
    return app


app = create_app()
