from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pymongo.database import Database

from .database import DONATION_EVENTS, EPOCH, as_utc, create_document, get_document, get_documents, sort_by, update_document, utcnow
from .errors import log_failures
from .schemas import DonationEvent, DonationEventUpdate, coerce, partial

ACTIVE_STATUSES = ["upcoming", "active"]


class DonationEventCatalog:
    def __init__(self, db: Database):
        self.db = db

    @log_failures("Error creating donation event")
    def create_event(self, event: Union[DonationEvent, Dict[str, Any]]) -> str:
        event = coerce(DonationEvent, event)
        doc = event.model_dump()
        doc["current_registered"] = 0
        return create_document(self.db, DONATION_EVENTS, doc)

    @log_failures("Error getting donation event")
    def get_by_id(self, event_id: str) -> Optional[Dict[str, Any]]:
        return get_document(self.db, DONATION_EVENTS, event_id)

    @log_failures("Error updating donation event")
    def update_event(self, event_id: str, fields: Union[DonationEventUpdate, Dict[str, Any]]) -> bool:
        return update_document(self.db, DONATION_EVENTS, event_id, partial(DonationEventUpdate, fields))

    @log_failures("Error getting hospital events")
    def get_hospital_events(self, hospital_id: str) -> List[Dict[str, Any]]:
        events = get_documents(self.db, DONATION_EVENTS, {"hospital_id": hospital_id})
        return sort_by(events, "event_date")

    @log_failures("Error getting upcoming events")
    def get_upcoming_events(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """
        Upcoming and active events from `now` on, soonest first. An event with
        no date is treated as happening now.
        """
        now = as_utc(now or utcnow())
        events = get_documents(self.db, DONATION_EVENTS, {"status": {"$in": ACTIVE_STATUSES}})
        upcoming = [e for e in events if as_utc(e.get("event_date") or now) >= now]
        return sort_by(upcoming, "event_date", descending=False)

    @log_failures("Error getting past events")
    def get_past_events(self, hospital_id: str, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        now = as_utc(now or utcnow())
        events = get_documents(self.db, DONATION_EVENTS, {"hospital_id": hospital_id})
        past = [e for e in events if EPOCH < as_utc(e.get("event_date")) < now]
        return sort_by(past, "event_date")
