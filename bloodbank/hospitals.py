import logging
from typing import Any, Dict, List, Optional, Union

from pymongo.database import Database

from .database import HOSPITAL_INVENTORY, HOSPITALS, create_document, delete_document, find_one, get_document, get_documents, update_document, utcnow
from .errors import ValidationFailure, log_failures
from .schemas import BLOOD_TYPES, Hospital, HospitalUpdate, InventoryLineUpdate, coerce, partial

logger = logging.getLogger(__name__)


class HospitalRegistry:
    """Hospital profiles. `is_verified` is only ever set outside this class."""

    def __init__(self, db: Database):
        self.db = db

    @log_failures("Error getting hospital profile")
    def get_by_id(self, hospital_id: str) -> Optional[Dict[str, Any]]:
        return get_document(self.db, HOSPITALS, hospital_id)

    @log_failures("Error getting hospital by user ID")
    def get_by_user_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        return find_one(self.db, HOSPITALS, {"user_id": user_id})

    @log_failures("Error getting all hospitals")
    def get_all(self) -> List[Dict[str, Any]]:
        return get_documents(self.db, HOSPITALS)

    @log_failures("Error registering hospital")
    def register(self, hospital: Union[Hospital, Dict[str, Any]]) -> str:
        hospital = coerce(Hospital, hospital)
        doc = hospital.model_dump()
        doc["is_verified"] = False
        doc["registration_date"] = utcnow()
        return create_document(self.db, HOSPITALS, doc)

    @log_failures("Error updating hospital profile")
    def update_profile(self, hospital_id: str, fields: Union[HospitalUpdate, Dict[str, Any]]) -> bool:
        return update_document(self.db, HOSPITALS, hospital_id, partial(HospitalUpdate, fields))


class HospitalInventoryLedger:
    """Per-hospital unit counts, one line per (hospital, blood type)."""

    def __init__(self, db: Database):
        self.db = db

    @log_failures("Error getting hospital inventory")
    def get_inventory(self, hospital_id: str) -> List[Dict[str, Any]]:
        return get_documents(self.db, HOSPITAL_INVENTORY, {"hospital_id": hospital_id})

    @staticmethod
    def default_lines(hospital_id: str) -> List[Dict[str, Any]]:
        """Unsaved zero lines for every blood type, for hospitals with no stock yet."""
        return [
            {"hospital_id": hospital_id, "blood_type": bt, "available_units": 0, "last_updated": None}
            for bt in BLOOD_TYPES
        ]

    @log_failures("Error getting inventory item")
    def get_item(self, item_id: str) -> Optional[Dict[str, Any]]:
        return get_document(self.db, HOSPITAL_INVENTORY, item_id)

    @log_failures("Error updating inventory item")
    def update_item(self, item_id: str, fields: Union[InventoryLineUpdate, Dict[str, Any]]) -> bool:
        changes = partial(InventoryLineUpdate, fields)
        return update_document(self.db, HOSPITAL_INVENTORY, item_id, changes, stamp="last_updated")

    @log_failures("Error deleting inventory item")
    def delete_item(self, item_id: str) -> bool:
        return delete_document(self.db, HOSPITAL_INVENTORY, item_id)

    @log_failures("Error updating inventory")
    def set_units(self, hospital_id: str, blood_type: str, units: int) -> Dict[str, Any]:
        """
        Set the units on hand for one blood type, creating the line if needed.

        This is a single upsert keyed by (hospital_id, blood_type) rather than
        a lookup followed by an insert, so two callers cannot create duplicate
        lines. Negative counts are rejected before anything is written.
        """
        if blood_type not in BLOOD_TYPES:
            raise ValidationFailure(f"Unknown blood type: {blood_type}")
        if not isinstance(units, int) or isinstance(units, bool) or units < 0:
            raise ValidationFailure("available_units must be a non-negative integer")
        now = utcnow()
        self.db[HOSPITAL_INVENTORY].update_one(
            {"hospital_id": hospital_id, "blood_type": blood_type},
            {"$set": {"available_units": units, "last_updated": now}},
            upsert=True,
        )
        logger.info("hospital %s %s -> %d units", hospital_id, blood_type, units)
        return find_one(self.db, HOSPITAL_INVENTORY, {"hospital_id": hospital_id, "blood_type": blood_type})
