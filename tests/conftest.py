from datetime import datetime, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

from bloodbank.config import Settings
from bloodbank.database import ensure_indexes
from bloodbank.main import Services, create_app
from bloodbank.schemas import AppUser


@pytest.fixture
def db():
    database = mongomock.MongoClient().bloodbank_test
    ensure_indexes(database)
    return database


@pytest.fixture
def settings():
    return Settings(jwt_secret="test-secret", federated_secret="federated-test-secret", federated_providers=["google"])


@pytest.fixture
def services(db, settings):
    return Services(db, settings)


@pytest.fixture
def client(db, settings):
    app = create_app(settings=settings, database=db)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def admin():
    return AppUser(id="admin-1", name="Admin", email="admin@example.com", role="admin")


def utc(year, month, day, hour=0):
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


def donor_data(user_id="user-1", blood_type="O-", **overrides):
    data = {
        "user_id": user_id,
        "name": "Asha Rao",
        "email": "asha@example.com",
        "phone": "5551234567",
        "blood_type": blood_type,
        "age": 29,
        "gender": "female",
        "weight": 61.5,
        "address": "12 Lake Road",
        "medical_history": {"has_tattoo": True},
    }
    data.update(overrides)
    return data


def hospital_details(**overrides):
    data = {
        "name": "City General",
        "email": "desk@citygeneral.org",
        "phone": "5550001111",
        "address": "1 Main St",
        "city": "Springfield",
        "state": "IL",
        "zip_code": "62701",
        "license_number": "LIC-4471",
        "contact_person": "Dr. Okafor",
    }
    data.update(overrides)
    return data


def request_data(user_id="recipient-1", blood_type="O-", units=2, **overrides):
    data = {
        "user_id": user_id,
        "patient_name": "J. Doe",
        "patient_age": 54,
        "blood_type": blood_type,
        "units_needed": units,
        "hospital_name": "City General",
        "contact_name": "R. Doe",
        "contact_phone": "5559998888",
        "urgency": "urgent",
        "reason": "Surgery",
    }
    data.update(overrides)
    return data
