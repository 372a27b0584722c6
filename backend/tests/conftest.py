import os
import pathlib
import sys
import tempfile
from datetime import date

import pytest


REPO_ROOT = pathlib.Path(__file__).resolve().parents[2]
sys.path.append(str(REPO_ROOT))


def pytest_configure():
    # pipeline tests inject their own providers; never reach real services from the suite
    os.environ.pop("ANTHROPIC_API_KEY", None)
    os.environ["PLAID_USE_STUB"] = "true"
    if os.getenv("DATABASE_URL") or os.getenv("SQLALCHEMY_DATABASE_URL"):
        return
    temp_dir = tempfile.mkdtemp(prefix="leakdetector-tests-")
    db_path = pathlib.Path(temp_dir) / "pytest.db"
    os.environ["DATABASE_URL"] = f"sqlite:///{db_path}"


@pytest.fixture()
def sqlite_engine():
    from backend.app.db import Base, engine

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def session_factory(sqlite_engine):
    from backend.app.db import SessionLocal

    return SessionLocal


@pytest.fixture()
def sqlite_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


class FakeBank:
    """Bank-data provider returning a fixed list, optionally failing the first calls."""

    provider = "plaid"

    def __init__(self, transactions=(), *, failures=()):
        self.transactions = list(transactions)
        self.failures = list(failures)
        self.calls = []

    async def fetch_transactions(self, access_token, start_date, end_date):
        self.calls.append((access_token, start_date, end_date))
        if self.failures:
            raise self.failures.pop(0)
        return list(self.transactions)


class FakeCompletion:
    """Completion provider replaying canned replies (or raising canned errors) in order."""

    provider = "anthropic"

    def __init__(self, *replies):
        self.replies = list(replies)
        self.prompts = []

    async def complete(self, prompt):
        self.prompts.append(prompt)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, BaseException):
            raise reply
        return reply


class RecordingSender:
    def __init__(self, *, failures=()):
        self.failures = list(failures)
        self.sent = []

    async def send_report(self, *, to, subject, report):
        if self.failures:
            raise self.failures.pop(0)
        self.sent.append({"to": to, "subject": subject, "report": report})


async def no_sleep(_delay):
    return None


@pytest.fixture()
def fake_bank():
    return FakeBank


@pytest.fixture()
def fake_completion():
    return FakeCompletion


@pytest.fixture()
def recording_sender():
    return RecordingSender()


@pytest.fixture()
def failing_sender():
    def _build(*failures):
        return RecordingSender(failures=failures)

    return _build


@pytest.fixture()
def build_test_context(session_factory, recording_sender):
    """Factory for an isolated PipelineContext: fresh breakers and cache, no real sleeping."""
    from backend.app.config import Settings
    from backend.app.context import build_context

    def _build(*, bank=None, completion=None, sender=None, today=date(2024, 6, 30), settings=None):
        return build_context(
            session_factory,
            settings=settings or Settings(),
            bank=bank or FakeBank(),
            completion=completion,
            report_sender=sender or recording_sender,
            sleep=no_sleep,
            today=lambda: today,
        )

    return _build


@pytest.fixture()
def api_client(build_test_context):
    from backend.app.api.deps import get_pipeline_context
    from backend.app.main import app
    from fastapi.testclient import TestClient

    holder = {"ctx": build_test_context()}

    app.dependency_overrides[get_pipeline_context] = lambda: holder["ctx"]
    client = TestClient(app)
    client.context_holder = holder
    try:
        yield client
    finally:
        app.dependency_overrides.pop(get_pipeline_context, None)
