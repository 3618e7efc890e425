"""Pytest configuration and fixtures."""

import os

# Keep the application engine off disk; tests bind their own engine below
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from circlein.auth import get_token_claims  # noqa: E402
from circlein.cache import TTLCache  # noqa: E402
from circlein.database import Base, get_db  # noqa: E402
from circlein.email_service import Mailer, get_mailer  # noqa: E402
from circlein.main import app  # noqa: E402
from circlein.models import ADMIN  # noqa: E402
from circlein.routes.amenities import get_amenity_cache  # noqa: E402
from tests.util.seed import make_amenity, make_community, make_user  # noqa: E402

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeMailer(Mailer):
    """Records every message instead of delivering it"""

    def __init__(self):
        super().__init__(smtp_host=None, resend_api_key=None)
        self.sent = []
        self.templates = []
        self.fail = False

    async def send(self, to, subject, mjml_content):
        if self.fail:
            return {"success": False, "error": "SMTP connection refused"}
        self.sent.append({"to": to, "subject": subject, "mjml": mjml_content})
        return {"success": True, "messageId": f"fake-{len(self.sent)}"}

    async def send_template(self, to, notification_type, data):
        self.templates.append({"to": to, "type": notification_type, "data": data})
        return await super().send_template(to, notification_type, data)

    async def send_batch(self, recipients, subject, mjml_content, batch_size=10, pause_seconds=0):
        return await super().send_batch(recipients, subject, mjml_content, batch_size=batch_size, pause_seconds=0)

    def types_sent_to(self, email):
        return [t["type"] for t in self.templates if t["to"] == email]


@pytest.fixture(autouse=True)
def setup_database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def client(mailer):
    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    amenity_cache = TTLCache("amenities-test")
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_mailer] = lambda: mailer
    app.dependency_overrides[get_amenity_cache] = lambda: amenity_cache
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def login():
    """Act as the given email for subsequent requests"""

    def _login(email, name=None):
        app.dependency_overrides[get_token_claims] = lambda: {"email": email, "name": name or email}

    return _login


@pytest.fixture
def community(db):
    return make_community(db)


@pytest.fixture
def admin(db, community):
    return make_user(db, "admin@maple.test", role=ADMIN)


@pytest.fixture
def alice(db, community):
    return make_user(db, "alice@maple.test")


@pytest.fixture
def bob(db, community):
    return make_user(db, "bob@maple.test")


@pytest.fixture
def carol(db, community):
    return make_user(db, "carol@maple.test")


@pytest.fixture
def pool(db, community):
    return make_amenity(db)
