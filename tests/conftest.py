import copy
import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# read once by the cached settings; must be set before clinicalforge is imported
os.environ.setdefault("CLINICALFORGE_ADMIN_USERNAMES", '["admin1"]')

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from clinicalforge.db import Base, get_db
from clinicalforge.main import app
from clinicalforge.services.cache import QueryCache
from clinicalforge.services.notifier import ChangeNotifier
from clinicalforge.services.repository import SubmissionRepository

# Use in-memory SQLite for testing to ensure isolation
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


COMPREHENSIVE_PAYLOAD = {
    "diseaseOverview": {
        "diseaseName": {"clinical": "Type 2 Diabetes Mellitus", "icd10Code": "E11"},
        "diseaseType": {"primary": "chronic", "secondary": ["Metabolic"]},
        "demographics": {
            "typicalAgeOfOnset": {"min": 40, "max": 60, "unit": "years"},
            "genderPrevalence": {"male": 52, "female": 48},
        },
    },
    "medications": [
        {
            "stage": "Early",
            "lineOfTreatment": "First line",
            "drugClass": "Biguanide metformin",
            "standardDosage": "500mg twice daily",
            "isSufficient": True,
        }
    ],
    "redFlags": [
        {
            "symptom": "Diabetic ketoacidosis",
            "stage": "Any",
            "hospitalizationRequired": True,
            "isSufficient": True,
        }
    ],
    "overallAssessment": {"clinicalRelevance": "excellent"},
}

ANALYTICS_PAYLOAD = {
    "decisionModels": [
        {
            "model": "Insulin escalation",
            "sections": ["Medications", "Lab Values"],
            "clinicalImpact": "high",
            "isSufficient": True,
        },
        {"model": "Referral pathway", "clinicalImpact": "low", "isSufficient": False},
    ],
    "criticalPoints": [{"section": "HbA1c threshold", "reason": "Drives escalation", "isSufficient": True}],
    "conflictZones": [{"sections": "Diet vs medication", "conflict": "Timing of insulin", "isResolved": False}],
    "feedbackLoops": [{"loop": "Quarterly HbA1c review", "isImplemented": True}],
    "sections": [{"name": "Lab Values", "isSufficient": True, "clinicalImpact": "high", "dataQuality": "good"}],
    "overallAssessment": {"clinicalRelevance": "good", "implementationReadiness": "ready"},
}


@pytest.fixture
def comprehensive_payload():
    return copy.deepcopy(COMPREHENSIVE_PAYLOAD)


@pytest.fixture
def analytics_payload():
    return copy.deepcopy(ANALYTICS_PAYLOAD)


@pytest.fixture(scope="function")
def session():
    """
    Create a fresh database session for each test.
    """
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def notifier():
    return ChangeNotifier()


@pytest.fixture
def repository(session, notifier):
    return SubmissionRepository(
        TestingSessionLocal, cache=QueryCache(maxsize=64, ttl=60), notifier=notifier, timeout=5
    )


@pytest.fixture(scope="function")
def client(session):
    """
    Create a TestClient whose app reads and writes the in-memory database.
    """
    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    saved = (app.state.engine, app.state.session_factory)
    app.state.engine = engine
    app.state.session_factory = TestingSessionLocal
    app.state.query_cache.clear()
    app.state.latest_dashboard = None
    app.state.live_feed_enabled = False
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    app.state.engine, app.state.session_factory = saved


@pytest.fixture
def login(client):
    """Register a user and return bearer headers for it."""

    def _login(username, role="contributor", display_name=None, **extra):
        client.post(
            "/api/v1/auth/register",
            json={
                "username": username,
                "password": "password123",
                "display_name": display_name or username.title(),
                "role": role,
                **extra,
            },
        )
        response = client.post(
            "/api/v1/auth/login", data={"username": username, "password": "password123"}
        )
        return {"Authorization": f"Bearer {response.json()['access_token']}"}

    return _login


@pytest.fixture
def contributor_headers(login):
    return login("dr_rahman", display_name="Dr. Amina Rahman", institution="Dhaka Medical College")


@pytest.fixture
def admin_headers(login):
    return login("admin1", role="admin", display_name="Review Admin")
