import pytest

from bloodbank.database import HOSPITAL_INVENTORY
from bloodbank.errors import ValidationFailure
from bloodbank.schemas import BLOOD_TYPES

from .conftest import hospital_details


def test_register_is_never_verified(services):
    hospital_id = services.hospitals.register({**hospital_details(), "user_id": "h-1", "is_verified": True})
    hospital = services.hospitals.get_by_id(hospital_id)
    assert hospital["is_verified"] is False
    assert hospital["registration_date"] is not None
    assert services.hospitals.get_by_user_id("h-1")["_id"] == hospital_id


def test_update_profile_cannot_verify(services):
    hospital_id = services.hospitals.register({**hospital_details(), "user_id": "h-1"})
    services.hospitals.update_profile(hospital_id, {"phone": "5552223333", "is_verified": True})
    hospital = services.hospitals.get_by_id(hospital_id)
    assert hospital["phone"] == "5552223333"
    assert hospital["is_verified"] is False


def test_set_units_creates_then_updates_one_line(services, db):
    first = services.inventory_ledger.set_units("hosp-1", "A+", 4)
    second = services.inventory_ledger.set_units("hosp-1", "A+", 9)
    assert first["_id"] == second["_id"]
    assert second["available_units"] == 9
    assert second["last_updated"] is not None
    assert db[HOSPITAL_INVENTORY].count_documents({"hospital_id": "hosp-1", "blood_type": "A+"}) == 1


def test_set_units_lines_are_per_hospital_and_type(services):
    services.inventory_ledger.set_units("hosp-1", "A+", 4)
    services.inventory_ledger.set_units("hosp-1", "O-", 2)
    services.inventory_ledger.set_units("hosp-2", "A+", 1)
    lines = services.inventory_ledger.get_inventory("hosp-1")
    assert {(l["blood_type"], l["available_units"]) for l in lines} == {("A+", 4), ("O-", 2)}


@pytest.mark.parametrize("units", [-1, 2.5, True])
def test_set_units_rejects_bad_counts(services, db, units):
    with pytest.raises(ValidationFailure):
        services.inventory_ledger.set_units("hosp-1", "A+", units)
    assert db[HOSPITAL_INVENTORY].count_documents({}) == 0


def test_set_units_rejects_unknown_type(services, db):
    with pytest.raises(ValidationFailure):
        services.inventory_ledger.set_units("hosp-1", "Z+", 3)
    assert db[HOSPITAL_INVENTORY].count_documents({}) == 0


def test_update_and_delete_item(services):
    line = services.inventory_ledger.set_units("hosp-1", "B-", 3)
    assert services.inventory_ledger.update_item(line["_id"], {"available_units": 7})
    assert services.inventory_ledger.get_item(line["_id"])["available_units"] == 7
    with pytest.raises(ValidationFailure):
        services.inventory_ledger.update_item(line["_id"], {"available_units": -2})
    assert services.inventory_ledger.delete_item(line["_id"])
    assert services.inventory_ledger.get_item(line["_id"]) is None


def test_default_lines_cover_every_type(services):
    lines = services.inventory_ledger.default_lines("hosp-1")
    assert [l["blood_type"] for l in lines] == BLOOD_TYPES
    assert all(l["available_units"] == 0 for l in lines)
