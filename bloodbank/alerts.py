import logging
from typing import Any, Dict, List

from pymongo.database import Database

from .database import DONATION_ALERTS, get_document, get_documents, sort_by, update_document
from .errors import NotFoundError, PermissionDenied, log_failures
from .schemas import AppUser

logger = logging.getLogger(__name__)


class AlertInbox:
    """Notifications addressed to a user, newest first."""

    def __init__(self, db: Database):
        self.db = db

    @log_failures("Error getting user alerts")
    def list_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        alerts = get_documents(self.db, DONATION_ALERTS, {"user_id": user_id})
        return sort_by(alerts, "created_at")

    @log_failures("Error counting unread alerts")
    def unread_count(self, user_id: str) -> int:
        return self.db[DONATION_ALERTS].count_documents({"user_id": user_id, "status": "unread"})

    @log_failures("Error marking alert as read")
    def mark_read(self, alert_id: str, actor: AppUser) -> None:
        """Only the alert's recipient or an admin may mark it read."""
        alert = get_document(self.db, DONATION_ALERTS, alert_id)
        if alert is None:
            raise NotFoundError("Alert not found")
        if actor.role != "admin" and alert["user_id"] != actor.id:
            logger.warning("user %s tried to mark alert %s of user %s", actor.id, alert_id, alert["user_id"])
            raise PermissionDenied("Not allowed")
        update_document(self.db, DONATION_ALERTS, alert_id, {"status": "read"})
