import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import livechat.models  # noqa: F401  registers tables on Base.metadata
from livechat.adapters.sql_store import SqlMessageStore
from livechat.channels.memory import InMemoryRealtimeClient
from livechat.db import Base, db_manager
from livechat.services.message_gateway import MessageStoreGateway

pytest_plugins = [
    "tests.fixtures.message_fixtures",
    "tests.fixtures.profile_fixtures",
]


@pytest.fixture(scope="function")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    db_manager.bind(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def realtime():
    return InMemoryRealtimeClient()


@pytest.fixture
def store(engine, realtime):
    return SqlMessageStore(db_manager.db_session, realtime)


@pytest.fixture
def gateway(store):
    return MessageStoreGateway(store)
