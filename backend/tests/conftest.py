"""
Test configuration and shared fixtures for the EV service booking test suite.

Each test gets its own in-memory SQLite database built from the model
metadata, so tests never see each other's rows. Helper functions below create
the entities most tests need (customers, technicians, vehicles, services,
slots, appointments).
"""

import pytest
from datetime import date, datetime, time, timedelta
from typing import Generator, Optional, Sequence

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from core.database import Base, get_db
from auth.dependencies import UserContext, get_current_user
from main import app
from models import (
    Appointment,
    ServiceItem,
    Slot,
    SlotTechnician,
    TechnicianProfile,
    TechnicianSkill,
    User,
    Vehicle,
)
from services.appointment_service import AppointmentService
from shared_types.workflow import Actor, ActorRole
from utils.datetime_utils import center_now


@pytest.fixture(scope="function")
def db_engine():
    """
    Create a fresh in-memory database for a test.

    StaticPool keeps the single in-memory connection alive and shares it with
    the TestClient's worker thread.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Provide a database session matching the application's session settings."""
    TestingSession = sessionmaker(
        bind=db_engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    session = TestingSession()

    yield session

    session.close()


@pytest.fixture
def client(db_session):
    """Create test client with database override."""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    client = TestClient(app)
    yield client
    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_current_user, None)


def login_as(user: User) -> UserContext:
    """Make every request of the test client run as ``user``."""
    user_context = UserContext(
        user_id=user.id,
        email=user.email,
        role=user.role,
        name=user.full_name,
    )
    app.dependency_overrides[get_current_user] = lambda: user_context
    return user_context


def actor_for(user: User) -> Actor:
    return Actor(ActorRole(user.role), user.id)


def next_workday(days_ahead: int = 3) -> date:
    """
    The first Monday at least ``days_ahead`` days from today.

    Mondays are inside every technician's default work week, and a date a few
    days out keeps appointments clear of lead-time rules unless a test wants
    otherwise.
    """
    day = center_now().date() + timedelta(days=days_ahead)
    while day.weekday() != 0:
        day += timedelta(days=1)
    return day


# Helper functions for creating test entities
def create_user(
    db_session: Session,
    email: str,
    role: str = "customer",
    full_name: Optional[str] = None,
    is_active: bool = True,
) -> User:
    user = User(
        email=email,
        full_name=full_name or email.split("@")[0].title(),
        role=role,
        is_active=is_active,
    )
    db_session.add(user)
    db_session.commit()
    return user


def create_customer(db_session: Session, email: str = "customer@test.com") -> User:
    return create_user(db_session, email, role="customer")


def create_staff(db_session: Session, email: str = "staff@test.com", role: str = "staff") -> User:
    return create_user(db_session, email, role=role)


def create_technician(
    db_session: Session,
    email: str,
    skills: Optional[dict[str, int]] = None,
    workload_current: int = 0,
    workload_capacity: int = 8,
    customer_rating: float = 4.0,
    efficiency: float = 80.0,
    availability_status: str = "available",
    shift_start: time = time(8, 0),
    shift_end: time = time(17, 0),
    work_days: Optional[list[str]] = None,
) -> User:
    """
    Create a technician user with a profile.

    Args:
        skills: Mapping of service category to proficiency level (1-5)
    """
    user = create_user(db_session, email, role="technician")
    profile = TechnicianProfile(
        technician_id=user.id,
        employee_id=f"EMP{user.id:04d}",
        availability_status=availability_status,
        workload_current=workload_current,
        workload_capacity=workload_capacity,
        shift_start=shift_start,
        shift_end=shift_end,
        customer_rating=customer_rating,
        efficiency=efficiency,
    )
    if work_days is not None:
        profile.work_days = work_days
    for category, level in (skills or {}).items():
        profile.skills.append(TechnicianSkill(service_category=category, proficiency_level=level))
    db_session.add(profile)
    db_session.commit()
    return user


def get_profile(db_session: Session, technician: User) -> TechnicianProfile:
    profile = db_session.query(TechnicianProfile).filter(
        TechnicianProfile.technician_id == technician.id
    ).one()
    db_session.refresh(profile)
    return profile


def create_vehicle(db_session: Session, customer: User, vin: Optional[str] = None) -> Vehicle:
    vehicle = Vehicle(
        customer_id=customer.id,
        make="VinFast",
        model="VF8",
        year=2024,
        vin=vin,
        license_plate=f"51K-{customer.id:05d}",
    )
    db_session.add(vehicle)
    db_session.commit()
    return vehicle


def create_service_item(
    db_session: Session,
    name: str = "Battery health check",
    category: str = "battery",
    base_price: int = 500000,
    estimated_duration: int = 60,
    is_active: bool = True,
) -> ServiceItem:
    item = ServiceItem(
        name=name,
        category=category,
        base_price=base_price,
        estimated_duration=estimated_duration,
        is_active=is_active,
    )
    db_session.add(item)
    db_session.commit()
    return item


def create_slot(
    db_session: Session,
    slot_date: date,
    start_time: time = time(9, 0),
    end_time: time = time(12, 0),
    capacity: int = 2,
    technicians: Sequence[tuple[User, int]] = (),
) -> Slot:
    slot = Slot(
        date=slot_date,
        start_time=start_time,
        end_time=end_time,
        capacity=capacity,
        booked_count=0,
        status="available",
    )
    for technician, max_capacity in technicians:
        slot.technicians.append(SlotTechnician(
            technician_id=technician.id,
            current_workload=0,
            max_capacity=max_capacity,
        ))
    db_session.add(slot)
    db_session.commit()
    return slot


def book_appointment(
    db_session: Session,
    customer: User,
    vehicle: Vehicle,
    services: Sequence[ServiceItem],
    scheduled_date: date,
    scheduled_time: time = time(9, 0),
    **kwargs,
) -> Appointment:
    """Book through AppointmentService so counters and the event log are set up as in production."""
    return AppointmentService.create_appointment(
        db_session,
        customer_id=customer.id,
        vehicle_id=vehicle.id,
        services=[{"service_id": item.id, "quantity": 1} for item in services],
        scheduled_date=scheduled_date,
        scheduled_time=scheduled_time,
        **kwargs,
    )


def force_status(db_session: Session, appointment: Appointment, status: str) -> Appointment:
    """Put an appointment directly into a status, bypassing the workflow (test setup only)."""
    appointment.status = status
    db_session.commit()
    return appointment


@pytest.fixture
def customer(db_session) -> User:
    return create_customer(db_session)


@pytest.fixture
def staff(db_session) -> User:
    return create_staff(db_session)


@pytest.fixture
def vehicle(db_session, customer) -> Vehicle:
    return create_vehicle(db_session, customer)


@pytest.fixture
def battery_service(db_session) -> ServiceItem:
    return create_service_item(db_session)


@pytest.fixture
def technician(db_session) -> User:
    return create_technician(db_session, "tech@test.com", skills={"battery": 4, "motor": 3})


@pytest.fixture
def booking_date() -> date:
    return next_workday()


def start_of(appointment: Appointment) -> datetime:
    return datetime.combine(appointment.scheduled_date, appointment.scheduled_time)
