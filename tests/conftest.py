import os
import tempfile
from datetime import date
from types import SimpleNamespace

# Point the app at SQLite before anything imports app.core
TEST_DB_FILE = os.path.join(tempfile.gettempdir(), f"fleet_agreements_test_{os.getpid()}.db")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{TEST_DB_FILE}"
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.main import fleet_app
from app.core.db import Base, get_async_db
from app.agreements.models import AgreementTemplate
from app.agreements.renderer import DEFAULT_TEMPLATE_BODY, DEFAULT_TEMPLATE_TITLE
from app.agreements.services import get_agreement_config, get_document_storage, get_mailer
from app.agreements.utils import AgreementConfig
from app.drivers.models import Driver
from app.organisations.models import Organisation
from app.users.models import Role, User
from app.users.utils import get_current_user
from app.vehicles.models import Vehicle, VehicleInspection

from helpers import FakeMailer, FakeStorage, run


@pytest.fixture
def engine():
    if os.path.exists(TEST_DB_FILE):
        os.remove(TEST_DB_FILE)
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{TEST_DB_FILE}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    async def create_tables():
        async with test_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    run(create_tables())
    yield test_engine
    run(test_engine.dispose())
    if os.path.exists(TEST_DB_FILE):
        os.remove(TEST_DB_FILE)


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def seed(session_factory):
    """
    A small fleet: two vehicles, three inspections, two drivers,
    an active and an inactive template and one operator.
    """
    async def load():
        async with session_factory() as db:
            admin = User(
                id=1, first_name="Avery", last_name="Admin",
                email_address="avery@fleet.example.com", is_active=True,
            )
            admin.roles.append(Role(id=1, name="admin"))
            db.add(admin)
            db.add(Organisation(id=1, name="Harbour Fleet Pty Ltd"))
            db.add_all([
                Vehicle(
                    id=1, make="Toyota", model="Corolla", year=2022,
                    vin="JTDBR32E720123456", license_plate="ABC123",
                ),
                Vehicle(
                    id=2, make="Hyundai", model="i30", year=2021,
                    vin="KMHD35LH5JU123456", license_plate="XYZ789",
                ),
            ])
            await db.flush()

            db.add_all([
                VehicleInspection(
                    id=1, vehicle_id=1, inspector_id=1, inspection_date=date(2025, 3, 5),
                    exterior_condition="Minor scratch on rear bumper",
                    interior_condition="Clean", mechanical_condition="Good",
                ),
                VehicleInspection(
                    id=2, vehicle_id=1, inspector_id=1, inspection_date=date(2025, 3, 10),
                    exterior_condition="Bumper repaired",
                    interior_condition="Clean", mechanical_condition="Good",
                ),
                VehicleInspection(
                    id=3, vehicle_id=2, inspector_id=1, inspection_date=date(2025, 2, 1),
                    exterior_condition="Good", interior_condition="Worn seats",
                    mechanical_condition="Needs service",
                ),
                Driver(
                    id=1, first_name="Jordan", last_name="Lee",
                    email_address="jordan.lee@example.com", phone_number="0400 111 222",
                ),
                Driver(id=2, first_name="Sam", last_name="Nguyen", phone_number="0400 333 444"),
                AgreementTemplate(
                    id=1, title=DEFAULT_TEMPLATE_TITLE, content_richtext=DEFAULT_TEMPLATE_BODY,
                    active=True, created_by=1,
                ),
                AgreementTemplate(
                    id=2, title="Retired Template", content_richtext="<p>{{ vehicle.make }}</p>",
                    active=False, created_by=1,
                ),
            ])
            await db.commit()

    run(load())
    return SimpleNamespace(
        admin_id=1,
        vehicle_id=1,
        other_vehicle_id=2,
        inspection_id=1,
        second_inspection_id=2,
        other_vehicle_inspection_id=3,
        driver_id=1,
        driver_without_email_id=2,
        template_id=1,
        inactive_template_id=2,
    )


def operator_user() -> User:
    user = User(
        id=1, first_name="Avery", last_name="Admin",
        email_address="avery@fleet.example.com", is_active=True,
    )
    user.roles = [Role(id=1, name="admin")]
    return user


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def agreement_config():
    return AgreementConfig(
        app_base_url="https://fleet.example.com",
        organisation_name="Fallback Fleet",
        signing_token_ttl_days=14,
        supporting_document_max_bytes=1024 * 1024,
    )


@pytest.fixture
def client(session_factory, seed, mailer, storage, agreement_config):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    fleet_app.dependency_overrides[get_async_db] = override_get_db
    fleet_app.dependency_overrides[get_current_user] = operator_user
    fleet_app.dependency_overrides[get_mailer] = lambda: mailer
    fleet_app.dependency_overrides[get_document_storage] = lambda: storage
    fleet_app.dependency_overrides[get_agreement_config] = lambda: agreement_config

    with TestClient(fleet_app) as test_client:
        yield test_client

    fleet_app.dependency_overrides.clear()
