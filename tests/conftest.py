"""
Shared fixtures: fast pipeline settings, a recording notifier and an
in-memory ledger backend reachable over ASGI.
"""
import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from audioscribe.backend.auth import create_access_token
from audioscribe.backend.database import Base, get_db
from audioscribe.backend.main import app as backend_app
from audioscribe.backend.models import User
from audioscribe.config import Settings
from audioscribe.jobs import ProcessingJob
from audioscribe.ledger import CreditLedgerClient
from audioscribe.runner import JobRunner
from audioscribe.store import JobStore
from audioscribe.tracker import JobTracker

STARTING_CREDITS = 1000


class RecordingNotifier:
    """Keeps every status update instead of sending it."""

    def __init__(self):
        self.calls = []

    async def notify(self, job, status, current_step, **kwargs):
        self.calls.append((job.id, status, current_step, kwargs))
        return True

    def for_job(self, job_id):
        return [call[1:] for call in self.calls if call[0] == job_id]


class FakeLedger:
    """Ledger double that records deductions and can fail on demand."""

    def __init__(self, errors=None):
        self.calls = []
        self.errors = list(errors or [])

    async def deduct(self, amount, *, key, **kwargs):
        self.calls.append((key, amount))
        if self.errors:
            raise self.errors.pop(0)
        return STARTING_CREDITS - amount


def make_job(job_id="job_a", duration=125.0, processing_days=21, credits=72, **kwargs) -> ProcessingJob:
    return ProcessingJob(
        id=job_id,
        file_id=kwargs.pop("file_id", f"file_{job_id}"),
        file_name=kwargs.pop("file_name", f"{job_id}.mp3"),
        file_size=kwargs.pop("file_size", 2048),
        file_duration=duration,
        processing_days=processing_days,
        credits_required=credits,
        **kwargs,
    )


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def fast_settings():
    """Settings with every simulated delay switched off."""
    return Settings(
        progress_tick_seconds=0,
        step_settle_seconds=0,
        step_delay_scale=0,
        backend_token=None,
    )


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_tracker(fast_settings, notifier):
    """Build a store, runner and tracker. Must be called inside a running loop."""

    def factory(steps=None, settings=None):
        store = JobStore()
        runner = JobRunner(store, steps=steps, notifier=notifier, settings=settings or fast_settings)
        return JobTracker(store, runner, settings=settings or fast_settings)

    return factory


# =============================================================================
# Ledger backend
# =============================================================================

@pytest.fixture
def backend_sessions():
    """Fresh in-memory database wired into the backend app."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    backend_app.dependency_overrides[get_db] = override_get_db
    yield TestingSessionLocal
    backend_app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def backend_user(backend_sessions):
    db = backend_sessions()
    user = User(email="listener@example.com", name="Test Listener", credits=STARTING_CREDITS)
    db.add(user)
    db.commit()
    db.refresh(user)
    user_id = user.id
    db.close()
    return user_id


@pytest.fixture
def auth_token(backend_user):
    return create_access_token({"sub": str(backend_user)})


@pytest.fixture
def balance(backend_sessions, backend_user):
    """Read the user's balance straight from the database."""

    def read():
        db = backend_sessions()
        try:
            return db.query(User).filter(User.id == backend_user).first().credits
        finally:
            db.close()

    return read


@pytest.fixture
def backend_client(auth_token):
    client = TestClient(backend_app)
    client.headers.update({"Authorization": f"Bearer {auth_token}"})
    return client


@pytest.fixture
def ledger_client(auth_token, fast_settings):
    return CreditLedgerClient(
        base_url="http://testserver",
        token=auth_token,
        transport=httpx.ASGITransport(app=backend_app),
        settings=fast_settings,
    )
