from datetime import date, datetime, timedelta, timezone

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from institute_api import config, database, models
from institute_api.database import get_db
from institute_api.gateway import RazorpayGateway, get_gateway, to_minor_units
from institute_api.main import app
from institute_api.models import Role


class FakeGateway(RazorpayGateway):
    """Records orders instead of calling Razorpay; signatures use the real HMAC."""

    def __init__(self):
        super().__init__("rzp_test_key", "rzp_test_secret", "INR")
        self.orders = []

    def create_order(self, amount, receipt, notes):
        order = {
            "id": f"order_test{len(self.orders) + 1}",
            "entity": "order",
            "amount": to_minor_units(amount),
            "currency": self.currency,
            "receipt": receipt,
            "notes": {key: str(value) for key, value in notes.items() if value is not None},
            "status": "created",
        }
        self.orders.append(order)
        return order

    def sign(self, order_id, payment_id):
        return self.expected_signature(order_id, payment_id)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    database.Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def SessionTesting(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(SessionTesting):
    session = SessionTesting()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture(autouse=True)
def upload_dir(tmp_path, monkeypatch):
    path = tmp_path / "uploads"
    path.mkdir()
    monkeypatch.setattr(config, "UPLOAD_DIR", str(path))
    monkeypatch.setattr(config, "RABBITMQ_URL", "")
    return path


@pytest.fixture
def client(SessionTesting, gateway):
    def override_get_db():
        session = SessionTesting()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


class Seed:
    pass


@pytest.fixture
def seed(db):
    """Two branches, two courses and one user per role."""
    s = Seed()
    s.north = models.Branch(
        name="North Campus", code="NTH", street="1 Main Road", city="Pune", state="Maharashtra",
        pincode="411001", phone="9876500001", email="north@example.com", facilities=["Lab"],
    )
    s.south = models.Branch(
        name="South Campus", code="STH", street="9 Lake Road", city="Pune", state="Maharashtra",
        pincode="411002", phone="9876500002", email="south@example.com", facilities=[],
    )
    db.add_all([s.north, s.south])
    db.flush()

    s.tally = models.Course(
        title="Tally Prime", code="TALLY", category="Accounting", description="Accounting with Tally",
        short_description="Tally", duration=6, fees=15000,
    )
    s.design = models.Course(
        title="Graphic Design", code="GD101", category="Designing", description="Design fundamentals",
        short_description="Design", level="Intermediate", duration=3, fees=12000,
    )
    s.tally.branches = [s.north, s.south]
    s.design.branches = [s.north]
    db.add_all([s.tally, s.design])

    def user(first, role, branch=None):
        u = models.User(
            first_name=first, last_name="Test", email=f"{first.lower()}@example.com",
            mobile="9000000000", role=role, branch_id=branch.id if branch else None,
        )
        db.add(u)
        return u

    s.super_admin = user("Sam", Role.SUPER_ADMIN)
    s.admin = user("Ada", Role.ADMIN)
    s.north_admin = user("Nina", Role.BRANCH_ADMIN, s.north)
    s.south_admin = user("Sid", Role.BRANCH_ADMIN, s.south)
    s.reception = user("Rita", Role.RECEPTION, s.north)
    s.teacher = user("Tom", Role.TEACHER, s.north)
    s.accountant = user("Alan", Role.ACCOUNTANT, s.north)
    s.student = user("Priya", Role.STUDENT, s.north)
    s.other_student = user("Rahul", Role.STUDENT, s.south)
    db.commit()
    return s


def create_access_token(user_id, expires_delta=timedelta(hours=1)):
    """Mint a token the way the identity service does."""
    expire = datetime.now(timezone.utc) + expires_delta
    return jwt.encode({"id": user_id, "exp": expire}, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def auth_header(user):
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


def admission_payload(student_id=None, course_id=1, branch_id=1, **payment):
    payload = {
        "personalDetails": {
            "fullName": "Priya Sharma",
            "mobileNumber": "9876543210",
            "emailId": "priya@example.com",
            "dateOfBirth": date(2004, 5, 17).isoformat(),
            "gender": "Female",
        },
        "address": {
            "addressLine1": "12 Station Road",
            "city": "Pune",
            "district": "Pune",
            "pincode": "411001",
            "state": "Maharashtra",
        },
        "courseDetails": {"courseId": course_id, "branchId": branch_id, "batchId": 7},
        "paymentDetails": {"paymentType": "ONE_TIME", "registrationFees": 500, "paymentMode": "Online"},
    }
    if student_id is not None:
        payload["studentId"] = student_id
    payload["paymentDetails"].update(payment)
    return payload


@pytest.fixture
def create_admission(client, seed):
    """Create an admission through the API as ``actor`` (Admin by default)."""

    def _create(actor=None, student=None, course=None, branch=None, **payment):
        actor = actor or seed.admin
        student = student or seed.student
        body = admission_payload(
            student.id,
            (course or seed.tally).id,
            (branch or seed.north).id,
            **payment,
        )
        resp = client.post("/api/admissions", json=body, headers=auth_header(actor))
        assert resp.status_code == 201, resp.text
        return resp.json()["admission"]

    return _create
