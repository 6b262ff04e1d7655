"""Pytest fixtures for testing"""

import random
import uuid
from datetime import datetime, timedelta
from typing import Generator, List

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from fee_ledger.api.dependencies import get_clock, get_id_generator, get_notification_client
from fee_ledger.api.main import create_app
from fee_ledger.domain.exceptions import NotificationDeliveryError
from fee_ledger.domain.models import FeeComponent, FeeStructure
from fee_ledger.infrastructure.database.models import Base, Student
from fee_ledger.infrastructure.database.repositories import FeeStructureRepository
from fee_ledger.infrastructure.database.session import get_db
from fee_ledger.services.collection import FeeCollectionService
from fee_ledger.services.defaulters import DefaulterService
from fee_ledger.services.reporting import ReportingService
from fee_ledger.utils.ids import TransactionIdGenerator


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Mid-June 2025: April and May installments are overdue, June's is not yet past grace
NOW = datetime(2025, 6, 15, 10, 0, 0)
ACADEMIC_YEAR = "2025-2026"
SCHOOL_ID = "SCH-1"
OTHER_SCHOOL_ID = "SCH-2"


class FixedClock:
    """Callable clock that tests can move forward"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingNotifier:
    """Stands in for the notification webhook client"""

    def __init__(self, fail_for: List[str] = ()):
        self.fail_for = set(fail_for)
        self.sent: List[dict] = []

    async def send_reminder(self, payload: dict) -> None:
        if payload["student_id"] in self.fail_for:
            raise NotificationDeliveryError("webhook unavailable")
        self.sent.append(payload)


def make_structure(
    grade: str,
    monthly_amount: int,
    components: List[FeeComponent] = (),
    due_day: int = 10,
    school_id: str = SCHOOL_ID,
    academic_year: str = ACADEMIC_YEAR,
    created_at: datetime = datetime(2025, 3, 1),
) -> FeeStructure:
    return FeeStructure(
        id=uuid.uuid4(),
        school_id=school_id,
        grade=grade,
        academic_year=academic_year,
        monthly_amount=monthly_amount,
        one_time_components=list(components),
        due_day=due_day,
        is_active=True,
        created_at=created_at,
    )


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def id_generator(clock: FixedClock) -> TransactionIdGenerator:
    return TransactionIdGenerator(clock=clock, rng=random.Random(42))


@pytest.fixture
def seeded(db: Session) -> dict:
    """
    Roster and fee structures for two schools.

    Grade 5: ₹1000/month plus a ₹500 admission fee.
    Grade 6: ₹2000/month, no one-time fees.
    Grade 7: no fee structure.
    """
    db.add_all(
        [
            Student(id="STU-1", school_id=SCHOOL_ID, grade="5", section="A", roll_number=1, name="Asha Rao"),
            Student(id="STU-2", school_id=SCHOOL_ID, grade="5", section="B", roll_number=2, name="Vikram Singh"),
            Student(id="STU-3", school_id=SCHOOL_ID, grade="6", section="A", roll_number=1, name="Meera Iyer"),
            Student(id="STU-4", school_id=SCHOOL_ID, grade="7", section="A", roll_number=1, name="Kabir Das"),
            Student(id="STU-9", school_id=OTHER_SCHOOL_ID, grade="5", section="A", roll_number=1, name="Nisha Paul"),
        ]
    )
    repo = FeeStructureRepository(db)
    grade5 = make_structure("5", 1000, [FeeComponent(fee_type="admission", amount=500)])
    grade6 = make_structure("6", 2000)
    repo.add(grade5)
    repo.add(grade6)
    repo.add(make_structure("5", 1000, school_id=OTHER_SCHOOL_ID))
    db.commit()
    return {"grade5": grade5, "grade6": grade6}


@pytest.fixture
def collection_service(db: Session, clock: FixedClock, id_generator, seeded) -> FeeCollectionService:
    return FeeCollectionService(db, clock=clock, id_generator=id_generator)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def defaulter_service(db: Session, clock: FixedClock, notifier: RecordingNotifier, seeded) -> DefaulterService:
    return DefaulterService(db, clock=clock, notification_client=notifier)


@pytest.fixture
def reporting_service(db: Session, clock: FixedClock, seeded) -> ReportingService:
    return ReportingService(db, clock=clock)


@pytest.fixture
def client(db: Session, clock: FixedClock, id_generator, notifier: RecordingNotifier, seeded) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_id_generator] = lambda: id_generator
    app.dependency_overrides[get_notification_client] = lambda: notifier
    return TestClient(app)
