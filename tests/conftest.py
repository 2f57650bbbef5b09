import os

os.environ["ENV"] = "test"
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from assessment_portal.main import app
from assessment_portal.db import Base, get_db
from assessment_portal.models.candidate import Candidate, Organization
from assessment_portal.models.question import Domain, Question, QuestionOption, QuestionType, Subdomain
from assessment_portal.models.test_definition import TestDefinition, TestQuestion
from assessment_portal.models.user import User, UserRole
from assessment_portal.services.auth import get_current_user
from assessment_portal.services.scoring import standard_likert_options
from assessment_portal.utils.datetime import utc_now_naive

# Use SQLite in-memory for test DB
TEST_DATABASE_URL = "sqlite+pysqlite:///:memory:"
# StaticPool keeps one shared connection so the TestClient's sessions and the
# fixtures' sessions see the same in-memory database.
engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db

ADMIN_ID = "admin-1"
SUPERVISOR_ID = "supervisor-1"
OTHER_SUPERVISOR_ID = "supervisor-2"
CANDIDATE_USER_ID = "candidate-1"

CANDIDATE_ID = 101
OTHER_CANDIDATE_ID = 102
ORG_ID = 1
LEADERSHIP_DOMAIN_ID = 10
DECISIVENESS_ID = 11
EMPATHY_ID = 12
MAIN_TEST_ID = 1
FEEDBACK_TEST_ID = 2


@pytest.fixture(autouse=True)
def setup_test_db():
    # recreate schema for each test to ensure isolation
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    app.dependency_overrides.pop(get_current_user, None)


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def db_session():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.rollback()
        db.close()


class MockUser:
    def __init__(self, role, id=None, candidate_id=None, name=None):
        self.role = UserRole(role)
        self.id = id or f"{self.role.value}-1"
        self.name = name or f"{self.role.value.title()} User"
        self.email = f"{self.id}@example.com"
        self.candidate_id = candidate_id


def _as(user):
    app.dependency_overrides[get_current_user] = lambda: user
    return user


@pytest.fixture
def as_admin():
    return _as(MockUser("admin", id=ADMIN_ID))


@pytest.fixture
def as_candidate():
    return _as(MockUser("candidate", id=CANDIDATE_USER_ID, candidate_id=CANDIDATE_ID))


@pytest.fixture
def as_supervisor():
    return _as(MockUser("supervisor", id=SUPERVISOR_ID))


@pytest.fixture
def switch_user():
    """Change the authenticated user mid-test: switch_user("candidate", candidate_id=101)."""
    def _switch(role, **kwargs):
        if role == "candidate":
            kwargs.setdefault("id", CANDIDATE_USER_ID)
            kwargs.setdefault("candidate_id", CANDIDATE_ID)
        elif role == "supervisor":
            kwargs.setdefault("id", SUPERVISOR_ID)
        else:
            kwargs.setdefault("id", ADMIN_ID)
        return _as(MockUser(role, **kwargs))
    return _switch


def _likert_question(qid, text, subdomain_id, is_reversed=False, points=5):
    question = Question(
        id=qid,
        text=text,
        question_type=QuestionType.likert_scale,
        is_likert=True,
        is_reversed=is_reversed,
        likert_points=points,
        domain_id=LEADERSHIP_DOMAIN_ID,
        subdomain_id=subdomain_id,
    )
    question.options = [QuestionOption(**opt) for opt in standard_likert_options(points)]
    return question


@pytest.fixture
def seed(db_session):
    """Organization, two candidates, users, a Leadership domain and two tests.

    Test 1 holds Q1 (Decisiveness, forward) and Q2 (Empathy, reversed) plus a
    free-text Q3 with no domain. Test 2 is a one-question supervisor form.
    """
    db = db_session
    db.add(Organization(id=ORG_ID, name="Acme", terms_and_conditions="Be honest."))
    db.add_all([
        Candidate(id=CANDIDATE_ID, name="Casey Candidate", email="casey@example.com",
                  employee_id="E-101", org_id=ORG_ID),
        Candidate(id=OTHER_CANDIDATE_ID, name="Robin Other", email="robin@example.com", org_id=ORG_ID),
    ])
    db.add_all([
        User(id=ADMIN_ID, name="Admin One", email="admin@example.com", role=UserRole.admin),
        User(id=CANDIDATE_USER_ID, name="Casey Candidate", email="casey-login@example.com",
             role=UserRole.candidate, candidate_id=CANDIDATE_ID),
        User(id=SUPERVISOR_ID, name="Sam Supervisor", email="sam@example.com", role=UserRole.supervisor),
        User(id=OTHER_SUPERVISOR_ID, name="Pat Supervisor", email="pat@example.com", role=UserRole.supervisor),
    ])
    db.add(Domain(id=LEADERSHIP_DOMAIN_ID, name="Leadership"))
    db.add_all([
        Subdomain(id=DECISIVENESS_ID, name="Decisiveness", domain_id=LEADERSHIP_DOMAIN_ID),
        Subdomain(id=EMPATHY_ID, name="Empathy", domain_id=LEADERSHIP_DOMAIN_ID),
    ])
    db.flush()

    q1 = _likert_question(1, "I make decisions quickly.", DECISIVENESS_ID)
    q2 = _likert_question(2, "I find it hard to read how others feel.", EMPATHY_ID, is_reversed=True)
    q3 = Question(id=3, text="Describe a recent challenge.", question_type=QuestionType.text)
    q4 = _likert_question(4, "The candidate communicates clearly.", DECISIVENESS_ID)
    db.add_all([q1, q2, q3, q4])

    db.add(TestDefinition(id=MAIN_TEST_ID, name="Leadership Profile", duration_minutes=30,
                          instruction="Answer honestly.", closing_remarks="Thank you."))
    db.add(TestDefinition(id=FEEDBACK_TEST_ID, name="Supervisor Feedback", is_supervisor_feedback=True))
    db.flush()
    db.add_all([
        TestQuestion(test_id=MAIN_TEST_ID, question_id=1, position=1),
        TestQuestion(test_id=MAIN_TEST_ID, question_id=2, position=2),
        TestQuestion(test_id=MAIN_TEST_ID, question_id=3, position=3),
        TestQuestion(test_id=FEEDBACK_TEST_ID, question_id=4, position=1),
    ])
    db.commit()
    return db


def _assignment_payload(assignment_id=1, **overrides):
    now = utc_now_naive()
    payload = {
        "assignment_id": assignment_id,
        "test_id": MAIN_TEST_ID,
        "candidate_id": CANDIDATE_ID,
        "scheduled_at": (now - timedelta(hours=1)).isoformat(),
        "expires_at": (now + timedelta(days=7)).isoformat(),
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def assignment_payload():
    """Builder for a creation body whose window is open now."""
    return _assignment_payload


@pytest.fixture
def make_assignment(client, seed, as_admin):
    """Create an assignment through the API as admin and return its JSON."""
    def _make(assignment_id=1, **overrides):
        res = client.post("/test-assignments", json=_assignment_payload(assignment_id, **overrides))
        assert res.status_code == 201, res.text
        return res.json()
    return _make


# --- Email sending mock (autouse) ---
@pytest.fixture(autouse=True)
def mock_email_send(monkeypatch):
    """Prevent real SendGrid network calls; record what would have been sent."""
    from assessment_portal.services import email as email_mod

    sent = []

    def _fake_send_email(to_email, subject, html_content, plain_content, from_email=None):
        sent.append({"to": to_email, "subject": subject, "plain": plain_content})
        return True

    monkeypatch.setattr(email_mod, "send_email", _fake_send_email)
    yield sent
