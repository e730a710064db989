from typing import Any, Dict, List, Optional, Union

from pymongo.database import Database

from .database import BLOOD_REQUESTS, create_document, delete_document, get_document, get_documents, sort_by, update_document, utcnow
from .errors import log_failures
from .schemas import BloodRequest, BloodRequestUpdate, RequestStatusPayload, coerce, partial


class RequestQueue:
    """
    Blood requests submitted by recipients.

    Status changes made here do not alert the requester; the hospital
    response route in main.py sends that alert itself.
    """

    def __init__(self, db: Database):
        self.db = db

    @log_failures("Error creating blood request")
    def create(self, request: Union[BloodRequest, Dict[str, Any]]) -> str:
        request = coerce(BloodRequest, request)
        doc = request.model_dump()
        doc["status"] = "pending"
        doc["request_date"] = utcnow()
        return create_document(self.db, BLOOD_REQUESTS, doc)

    @log_failures("Error fetching blood request")
    def get_by_id(self, request_id: str) -> Optional[Dict[str, Any]]:
        return get_document(self.db, BLOOD_REQUESTS, request_id)

    @log_failures("Error updating blood request")
    def update(self, request_id: str, fields: Union[BloodRequestUpdate, Dict[str, Any]]) -> bool:
        return update_document(self.db, BLOOD_REQUESTS, request_id, partial(BloodRequestUpdate, fields))

    @log_failures("Error updating request status")
    def update_status(self, request_id: str, status: str, notes: Optional[str] = None) -> bool:
        payload = coerce(RequestStatusPayload, {"status": status, "notes": notes})
        fields: Dict[str, Any] = {"status": payload.status}
        if payload.notes:
            fields["response_notes"] = payload.notes
        return update_document(self.db, BLOOD_REQUESTS, request_id, fields)

    @log_failures("Error deleting blood request")
    def delete(self, request_id: str) -> bool:
        return delete_document(self.db, BLOOD_REQUESTS, request_id)

    def _newest_first(self, filter_dict: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        requests = get_documents(self.db, BLOOD_REQUESTS, filter_dict)
        return sort_by(requests, "created_at", "request_date")

    @log_failures("Error fetching blood requests")
    def get_all_requests(self) -> List[Dict[str, Any]]:
        return self._newest_first()

    @log_failures("Error fetching user requests")
    def get_requests_by_user_id(self, user_id: str) -> List[Dict[str, Any]]:
        return self._newest_first({"user_id": user_id})

    @log_failures("Error fetching hospital requests")
    def get_requests_for_hospital(self, hospital_id: str) -> List[Dict[str, Any]]:
        return self._newest_first({"hospital_id": hospital_id})

    @log_failures("Error fetching pending requests")
    def get_pending(self) -> List[Dict[str, Any]]:
        return get_documents(self.db, BLOOD_REQUESTS, {"status": "pending"})
