import logging

import pytest
from mongomock.collection import Collection
from pymongo.errors import PyMongoError

from bloodbank.database import DONATION_ALERTS, DONATION_RECORDS, as_utc
from bloodbank.errors import log_failures

from .conftest import donor_data, utc


@pytest.fixture
def alerts_down(monkeypatch):
    update_one = Collection.update_one

    def failing(self, *args, **kwargs):
        if self.name == DONATION_ALERTS:
            raise PyMongoError("alerts unavailable")
        return update_one(self, *args, **kwargs)

    monkeypatch.setattr(Collection, "update_one", failing)


def test_failed_alert_leaves_the_record_unalerted(services, db, caplog, alerts_down):
    donor_id = services.donors.register(donor_data(user_id="donor-user"))
    record = {
        "donor_id": donor_id,
        "user_id": "donor-user",
        "hospital_id": "hosp-1",
        "donation_date": utc(2024, 1, 10),
        "blood_type": "O-",
        "quantity": 1,
    }
    with caplog.at_level(logging.ERROR, logger="bloodbank"):
        with pytest.raises(PyMongoError, match="alerts unavailable"):
            services.donations.record_donation(record)

    assert "Error recording donation" in caplog.text
    assert db[DONATION_RECORDS].count_documents({"donor_id": donor_id}) == 1
    assert db[DONATION_ALERTS].count_documents({}) == 0
    assert as_utc(services.donors.get_by_id(donor_id)["last_donation"]) == utc(2024, 1, 10)


def test_log_failures_reraises_store_errors(caplog):
    error = PyMongoError("connection reset")

    @log_failures("Error loading things")
    def load():
        raise error

    with caplog.at_level(logging.ERROR, logger="bloodbank"):
        with pytest.raises(PyMongoError) as exc:
            load()
    assert exc.value is error
    assert "Error loading things" in caplog.text


def test_log_failures_ignores_other_errors(caplog):
    @log_failures("Error loading things")
    def load():
        raise ValueError("bad input")

    with caplog.at_level(logging.ERROR, logger="bloodbank"):
        with pytest.raises(ValueError):
            load()
    assert "Error loading things" not in caplog.text


def test_log_failures_passes_results_through():
    @log_failures("Error loading things")
    def load(x, y=1):
        return x + y

    assert load(2, y=3) == 5
