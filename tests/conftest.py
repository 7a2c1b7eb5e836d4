import os
import secrets
import sys
from datetime import date, datetime, timedelta
from pathlib import Path
import pytest
from fastapi.testclient import TestClient

# Ensure project root on sys.path so 'app' package resolves without installation
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

# File-based SQLite: the batch thread pool and worker open their own connections
SQLALCHEMY_TEST_URL = "sqlite+pysqlite:///./test_broker_campaigns.db"
os.environ["DATABASE_URL"] = SQLALCHEMY_TEST_URL
os.environ.setdefault("LOG_FILE", "logs/test.log")
os.environ.setdefault("SWEEP_ENABLED", "false")

from app.main import app  # type: ignore  # noqa: E402
from app.database import Base, engine, SessionLocal  # type: ignore  # noqa: E402
from app.api import deps  # type: ignore  # noqa: E402
"""Pytest fixtures and factories.

Important: SQLAlchemy relationship configuration requires all model modules to be imported
before Base.metadata.create_all(), otherwise back_populates targets might not exist yet.
"""
from app.models.db import User, Campaign, Policy, PolicyCampaignLink, RecalculationRun  # noqa: E402,F401
from app.models.db.enums import (  # noqa: E402
    AcceptanceStatus,
    CampaignStatus,
    CampaignType,
    ContractType,
    PolicyStatus,
    PolicyType,
    UserRole,
)
from app.services.progress_cache import InMemoryProgressCache  # noqa: E402
from app.services.recalculation import RecalculationService  # noqa: E402
from app.utils.time import utc_now  # noqa: E402

@pytest.fixture(autouse=True)
def create_test_db():
    """Fresh schema per test; ids restart so every test is independent."""
    Base.metadata.create_all(bind=engine)
    cache = getattr(app.state, "progress_cache", None)
    if isinstance(cache, InMemoryProgressCache):
        cache.clear()
    yield
    Base.metadata.drop_all(bind=engine)

@pytest.fixture(scope="session", autouse=True)
def remove_test_db_file():
    yield
    engine.dispose()
    try:
        os.remove("test_broker_campaigns.db")
    except OSError:
        pass

@pytest.fixture()
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()

# Override dependency
def _override_get_db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()

app.dependency_overrides[deps.get_db] = _override_get_db

@pytest.fixture()
def client():
    # No context manager: lifespan (worker + sweep) stays off, dispatch runs inline
    return TestClient(app)

@pytest.fixture()
def service():
    return RecalculationService(SessionLocal, cache=InMemoryProgressCache(), max_workers=2)

# ---------- Data factory helpers ----------

@pytest.fixture()
def user_factory(db_session):
    def _create(role: UserRole = UserRole.BROKER, name: str | None = None):
        token = secrets.token_hex(4)
        user = User(
            name=name or f"User {token}",
            email=f"{token}@example.com",
            api_key=f"key_{secrets.token_hex(12)}",
            role=role,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user
    return _create

@pytest.fixture()
def campaign_factory(db_session, user_factory):
    def _create(
        broker: User | None = None,
        *,
        type: CampaignType = CampaignType.VALUE,
        target: float = 10000,
        criteria=None,
        accepted: bool = True,
        accepted_at: datetime | None = None,
        status: CampaignStatus = CampaignStatus.ACTIVE,
        start_date: date | None = None,
        end_date: date | None = None,
        achieved_at: datetime | None = None,
        achieved_value: float | None = None,
    ):
        broker = broker or user_factory()
        today = utc_now().date()
        campaign = Campaign(
            title=f"Campaign {secrets.token_hex(2)}",
            user_id=broker.id,
            type=type,
            target=target,
            criteria=criteria,
            start_date=start_date or today - timedelta(days=10),
            end_date=end_date or today + timedelta(days=30),
            acceptance_status=AcceptanceStatus.ACCEPTED if accepted else AcceptanceStatus.PENDING,
            accepted_at=(accepted_at or utc_now() - timedelta(days=5)) if accepted else None,
            status=status,
            is_active=True,
            current_value=0,
            progress_percentage=0,
            achieved_at=achieved_at,
            achieved_value=achieved_value,
        )
        db_session.add(campaign)
        db_session.commit()
        db_session.refresh(campaign)
        return campaign
    return _create

@pytest.fixture()
def policy_factory(db_session):
    def _create(
        broker: User,
        *,
        policy_type: PolicyType = PolicyType.AUTO,
        contract_type: ContractType = ContractType.NEW,
        premium_value: float = 1000.0,
        status: PolicyStatus = PolicyStatus.ACTIVE,
    ):
        policy = Policy(
            user_id=broker.id,
            policy_number=f"POL-{secrets.token_hex(4)}",
            policy_type=policy_type,
            contract_type=contract_type,
            premium_value=premium_value,
            status=status,
        )
        db_session.add(policy)
        db_session.commit()
        db_session.refresh(policy)
        return policy
    return _create

@pytest.fixture()
def link_factory(db_session):
    def _create(policy: Policy, campaign: Campaign, *, linked_at: datetime | None = None, is_active: bool = True):
        link = PolicyCampaignLink(
            policy_id=policy.id,
            campaign_id=campaign.id,
            user_id=policy.user_id,
            linked_at=linked_at or utc_now(),
            is_active=is_active,
        )
        db_session.add(link)
        db_session.commit()
        db_session.refresh(link)
        return link
    return _create

@pytest.fixture()
def admin_headers(user_factory):
    admin = user_factory(UserRole.ADMIN)
    return {"Authorization": f"Bearer {admin.api_key}"}, admin
