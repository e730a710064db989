from typing import Any, Dict, List, Optional, Tuple, Union

from pymongo.database import Database

from .database import DONATIONS, DONORS, create_document, delete_document, find_one, get_document, get_documents, sort_by, update_document
from .effects import Effect, EffectRunner, SetLastDonation
from .errors import log_failures
from .schemas import DonationHistoryEntry, Donor, DonorUpdate, coerce, partial


class DonorRegistry:
    """Donor profiles and the donor-side donation history."""

    def __init__(self, db: Database, effects: Optional[EffectRunner] = None):
        self.db = db
        self.effects = effects or EffectRunner(db)

    @log_failures("Error getting donors")
    def get_all(self) -> List[Dict[str, Any]]:
        return get_documents(self.db, DONORS)

    @log_failures("Error getting donors by blood type")
    def get_by_blood_type(self, blood_type: str) -> List[Dict[str, Any]]:
        return get_documents(self.db, DONORS, {"blood_type": blood_type})

    @log_failures("Error getting donor")
    def get_by_id(self, donor_id: str) -> Optional[Dict[str, Any]]:
        return get_document(self.db, DONORS, donor_id)

    @log_failures("Error getting donor by user ID")
    def get_by_user_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        # profiles are looked up by their user_id field, not their document id
        return find_one(self.db, DONORS, {"user_id": user_id})

    @log_failures("Error registering donor")
    def register(self, donor: Union[Donor, Dict[str, Any]]) -> str:
        donor = coerce(Donor, donor)
        return create_document(self.db, DONORS, donor)

    @log_failures("Error updating donor")
    def update(self, donor_id: str, fields: Union[DonorUpdate, Dict[str, Any]]) -> bool:
        return update_document(self.db, DONORS, donor_id, partial(DonorUpdate, fields))

    @log_failures("Error deleting donor")
    def delete(self, donor_id: str) -> bool:
        return delete_document(self.db, DONORS, donor_id)

    @log_failures("Error getting donor history")
    def get_history(self, user_id: str) -> List[Dict[str, Any]]:
        entries = get_documents(self.db, DONATIONS, {"user_id": user_id})
        return sort_by(entries, "date")

    def insert_history_entry(self, entry: Union[DonationHistoryEntry, Dict[str, Any]]) -> Tuple[str, List[Effect]]:
        entry = coerce(DonationHistoryEntry, entry)
        entry_id = create_document(self.db, DONATIONS, entry)
        return entry_id, [SetLastDonation(donor_id=entry.donor_id, donation_date=entry.date)]

    @log_failures("Error recording donation")
    def record_history(self, entry: Union[DonationHistoryEntry, Dict[str, Any]]) -> str:
        entry_id, effects = self.insert_history_entry(entry)
        self.effects.apply(effects)
        return entry_id
