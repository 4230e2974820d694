import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from coachbot import models  # noqa: F401  (register mappers)
from coachbot.config import Settings
from coachbot.database import Base
from coachbot.errors import TelegramAPIError
from coachbot.metrics import WorkerMetrics
from coachbot.services.conversation_service import ConversationContext
from fakes import FakeLLM, FakeRedis, FakeTelegram


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    """Real SQLite session (in memory, shared connection)."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def test_settings():
    """Settings with retry delays collapsed so failure paths run instantly."""
    return Settings(
        telegram_bot_token="test-token",
        llm_retry_attempts=2,
        llm_retry_base_delay_seconds=0,
        telegram_retry_attempts=2,
        telegram_retry_base_delay_seconds=0,
        transcription_retry_attempts=1,
        transcription_retry_base_delay_seconds=0,
        job_max_attempts=3,
        job_backoff_base_seconds=1.0,
        digest_timezone="Europe/Moscow",
    )


@pytest.fixture
def telegram():
    return FakeTelegram()


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def conversation_ctx(telegram, llm, test_settings):
    return ConversationContext(telegram=telegram, llm=llm, metrics=WorkerMetrics(), settings=test_settings)


@pytest.fixture
def telegram_bad_request():
    return TelegramAPIError("sendMessage: Bad Request: chat not found", status_code=400)
