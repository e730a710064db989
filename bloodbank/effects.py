"""
Derived writes that follow a primary write.

Donor.last_donation and the donor's alerts are denormalised state: nothing
recomputes them, so every write that affects them returns the effects it
implies and hands them to `EffectRunner`. There is no transaction around the
primary write and its effects; if an effect fails, the primary write stays.
"""
import logging
import uuid
from datetime import datetime
from typing import Iterable, List, Union

from pydantic import BaseModel, Field
from pymongo.database import Database

from .database import DONATION_ALERTS, DONORS, update_document, utcnow
from .schemas import DonationAlert

logger = logging.getLogger(__name__)


class SetLastDonation(BaseModel):
    donor_id: str
    donation_date: datetime


class SendAlert(BaseModel):
    key: str = Field(default_factory=lambda: uuid.uuid4().hex)
    alert: DonationAlert


Effect = Union[SetLastDonation, SendAlert]


class EffectRunner:
    """Applies effects in order. Applying the same effect twice is harmless."""

    def __init__(self, db: Database):
        self.db = db

    def apply(self, effects: Iterable[Effect]) -> List[str]:
        applied = []
        for effect in effects:
            if isinstance(effect, SetLastDonation):
                self._set_last_donation(effect)
                applied.append(f"last_donation:{effect.donor_id}")
            elif isinstance(effect, SendAlert):
                applied.append(self._send_alert(effect))
            else:
                raise TypeError(f"Unknown effect: {effect!r}")
        return applied

    def _set_last_donation(self, effect: SetLastDonation) -> None:
        matched = update_document(self.db, DONORS, effect.donor_id, {"last_donation": effect.donation_date})
        if not matched:
            logger.warning("last_donation not updated, donor %s not found", effect.donor_id)
        else:
            logger.info("donor %s last_donation -> %s", effect.donor_id, effect.donation_date.date())

    def _send_alert(self, effect: SendAlert) -> str:
        doc = effect.alert.model_dump()
        doc["created_at"] = utcnow()
        result = self.db[DONATION_ALERTS].update_one(
            {"key": effect.key}, {"$setOnInsert": doc}, upsert=True
        )
        if result.upserted_id is not None:
            logger.info("%s alert %s sent to user %s", effect.alert.type, effect.key, effect.alert.user_id)
        return f"alert:{effect.key}"
