"""
Donation records kept by hospitals.

Recording a donation, or changing its status, implies writes to other
collections: the donor's last_donation and an alert to the donor. Those are
returned as effects by the `insert_*`/`rewrite_*` steps and applied by the
public operations. The steps are not atomic; if an effect fails after the
record was written, the record stays.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from pymongo.database import Database

from .database import DONATION_RECORDS, create_document, get_document, get_documents, sort_by, update_document
from .effects import Effect, EffectRunner, SendAlert, SetLastDonation
from .errors import NotFoundError, ValidationFailure, log_failures
from .schemas import DonationAlert, DonationRecord, DonationStatusPayload, coerce

logger = logging.getLogger(__name__)


def collection_message(record: DonationRecord) -> str:
    return f"Your blood donation was received by {record.hospital_id}"


def status_message(status: str) -> str:
    return f"Your blood donation status has been updated to: {status}"


class DonationRecordLog:
    def __init__(self, db: Database, effects: Optional[EffectRunner] = None):
        self.db = db
        self.effects = effects or EffectRunner(db)

    def insert_donation(self, record: Union[DonationRecord, Dict[str, Any]]) -> Tuple[str, List[Effect]]:
        record = coerce(DonationRecord, record)
        record_id = create_document(self.db, DONATION_RECORDS, record)
        alert = DonationAlert(
            user_id=record.user_id,
            donor_id=record.donor_id,
            hospital_id=record.hospital_id,
            record_id=record_id,
            message=collection_message(record),
            type="collection",
        )
        return record_id, [
            SetLastDonation(donor_id=record.donor_id, donation_date=record.donation_date),
            SendAlert(alert=alert),
        ]

    @log_failures("Error recording donation")
    def record_donation(self, record: Union[DonationRecord, Dict[str, Any]]) -> str:
        record_id, effects = self.insert_donation(record)
        self.effects.apply(effects)
        return record_id

    def rewrite_status(self, record_id: str, status: str, notes: Optional[str] = None) -> List[Effect]:
        payload = coerce(DonationStatusPayload, {"status": status, "notes": notes})
        current = get_document(self.db, DONATION_RECORDS, record_id)
        if current is None:
            raise NotFoundError("Donation record not found")
        update_document(self.db, DONATION_RECORDS, record_id, {
            "status": payload.status,
            "notes": payload.notes or current.get("notes"),
        })
        alert = DonationAlert(
            user_id=current["user_id"],
            donor_id=current.get("donor_id"),
            hospital_id=current.get("hospital_id"),
            record_id=record_id,
            message=status_message(payload.status),
            type="status_update",
        )
        return [SendAlert(alert=alert)]

    @log_failures("Error updating donation status")
    def update_donation_status(self, record_id: str, status: str, notes: Optional[str] = None) -> None:
        """Check the record exists, rewrite its status and notes, then alert the donor."""
        try:
            effects = self.rewrite_status(record_id, status, notes)
        except (NotFoundError, ValidationFailure):
            logger.warning("Donation status update rejected for %s", record_id)
            raise
        self.effects.apply(effects)

    @log_failures("Error getting donation record")
    def get_by_id(self, record_id: str) -> Optional[Dict[str, Any]]:
        return get_document(self.db, DONATION_RECORDS, record_id)

    @log_failures("Error getting hospital donations")
    def get_by_hospital(self, hospital_id: str) -> List[Dict[str, Any]]:
        records = get_documents(self.db, DONATION_RECORDS, {"hospital_id": hospital_id})
        return sort_by(records, "donation_date")

    @log_failures("Error getting donor donations")
    def get_by_donor(self, donor_id: str) -> List[Dict[str, Any]]:
        records = get_documents(self.db, DONATION_RECORDS, {"donor_id": donor_id})
        return sort_by(records, "donation_date")
