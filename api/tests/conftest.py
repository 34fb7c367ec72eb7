"""Pytest fixtures for API and engine testing."""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.core.database import get_db
from app.core.security import get_password_hash, create_access_token
from app.models.base import Base
from app.models.organization import Organization
from app.models.user import User
from app.models.control import Control, RiskControlLink
from app.models.risk import Risk
from app.models.period import Period

# In-memory SQLite for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    """Override database dependency for testing."""
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    yield db
    db.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db_session):
    """Test client with database override."""
    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def organization(db_session):
    org = Organization(name="Acme Holdings")
    db_session.add(org)
    db_session.commit()
    db_session.refresh(org)
    return org


@pytest.fixture
def other_organization(db_session):
    org = Organization(name="Globex Corporation")
    db_session.add(org)
    db_session.commit()
    db_session.refresh(org)
    return org


@pytest.fixture
def open_period(db_session, organization):
    """The organization's open period (normally created by its first write)."""
    period = Period(organization_id=organization.organization_id, status="open")
    db_session.add(period)
    db_session.commit()
    db_session.refresh(period)
    return period


@pytest.fixture
def test_user(db_session, organization):
    """Create a test user."""
    user = User(
        email="test@example.com",
        full_name="Test User",
        password_hash=get_password_hash("testpass123"),
        role="User",
        organization_id=organization.organization_id,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def admin_user(db_session, organization):
    """Create an admin user."""
    user = User(
        email="admin@example.com",
        full_name="Admin User",
        password_hash=get_password_hash("admin123"),
        role="Admin",
        organization_id=organization.organization_id,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def outsider_user(db_session, other_organization):
    """User of another organization."""
    user = User(
        email="outsider@example.com",
        full_name="Outside User",
        password_hash=get_password_hash("outside123"),
        role="Admin",
        organization_id=other_organization.organization_id,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def auth_headers(test_user):
    """Get authorization headers for test user."""
    token = create_access_token(data={"sub": test_user.email})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(admin_user):
    """Get authorization headers for admin user."""
    token = create_access_token(data={"sub": admin_user.email})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def outsider_headers(outsider_user):
    token = create_access_token(data={"sub": outsider_user.email})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_risk(db_session, organization):
    """Factory for risks of the test organization."""
    counter = {"n": 0}

    def _make(likelihood=3, impact=3, title=None, status="OPEN", category="Operational"):
        counter["n"] += 1
        risk = Risk(
            organization_id=organization.organization_id,
            risk_code=f"RSK-{counter['n']:05d}",
            title=title or f"Risk {counter['n']}",
            category=category,
            inherent_likelihood=likelihood,
            inherent_impact=impact,
            status=status,
        )
        db_session.add(risk)
        db_session.commit()
        db_session.refresh(risk)
        return risk

    return _make


@pytest.fixture
def make_control(db_session, organization):
    """Factory for controls; ``scores`` is (design, implementation, monitoring, evaluation)."""
    counter = {"n": 0}

    def _make(target="likelihood", scores=(3, 3, 3, 3), name=None):
        counter["n"] += 1
        design, implementation, monitoring, evaluation = scores
        control = Control(
            organization_id=organization.organization_id,
            control_code=f"CTL-{counter['n']:05d}",
            name=name or f"Control {counter['n']}",
            control_type="preventive",
            target=target,
            design_score=design,
            implementation_score=implementation,
            monitoring_score=monitoring,
            evaluation_score=evaluation,
        )
        db_session.add(control)
        db_session.commit()
        db_session.refresh(control)
        return control

    return _make


@pytest.fixture
def link_control(db_session):
    """Link a control to a risk, with optional per-link score overrides."""
    def _link(risk, control, **overrides):
        link = RiskControlLink(risk_id=risk.risk_id, control_id=control.control_id, **overrides)
        db_session.add(link)
        db_session.commit()
        db_session.refresh(link)
        return link

    return _link


@pytest.fixture
def sample_risk(make_risk, open_period):
    """L=5, I=4 risk in an organization with an open period."""
    return make_risk(likelihood=5, impact=4, title="Payment platform outage")
