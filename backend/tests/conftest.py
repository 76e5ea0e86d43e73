import os
import tempfile
from datetime import datetime, timedelta
from pathlib import Path

# Settings are read at import time; keep test runs off any developer .env values.
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("LOG_FILE", str(Path(tempfile.gettempdir()) / "authcore-tests.log"))
os.environ.setdefault("DB_INIT_MODE", "off")

import pytest

from authcore.core.database import Base, Database
from authcore.services.account_service import account_service
from authcore.services.audit_ledger import RequestContext

DEFAULT_PASSWORD = "correct-horse-battery"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2026, 3, 1, 9, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def database():
    db = Database()
    db.init("sqlite:///:memory:")
    Base.metadata.create_all(bind=db.engine)
    yield db
    db.dispose()


@pytest.fixture
def db_session(database):
    with database.session() as session:
        yield session


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def context():
    return RequestContext(ip_address="10.0.0.7", user_agent="pytest", method="POST", path="/api/v1/auth/login")


@pytest.fixture
def make_account(db_session):
    def _make(email="staff@example.com", password=DEFAULT_PASSWORD, **kwargs):
        return account_service.create_account(db_session, email=email, password=password, **kwargs)
    return _make
