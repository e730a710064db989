"""
Blood availability read model and the ABO/Rh compatibility chart.

Availability is recomputed on every call from the donors and bloodRequests
collections; nothing is cached or materialised.
"""
from collections import Counter
from typing import Dict, List

from pymongo.database import Database

from .blood_requests import RequestQueue
from .database import utcnow
from .donors import DonorRegistry
from .errors import ValidationFailure, log_failures
from .schemas import BLOOD_TYPES, BloodAvailability

# Recipient blood type -> donor blood types it can receive from
COMPATIBILITY_CHART = {
    "A+": ["A+", "A-", "O+", "O-"],
    "A-": ["A-", "O-"],
    "B+": ["B+", "B-", "O+", "O-"],
    "B-": ["B-", "O-"],
    "AB+": ["A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-"],
    "AB-": ["A-", "B-", "AB-", "O-"],
    "O+": ["O+", "O-"],
    "O-": ["O-"],
}

BLOOD_TYPE_DISPLAY = {
    "A+": "A Positive (A+)",
    "A-": "A Negative (A-)",
    "B+": "B Positive (B+)",
    "B-": "B Negative (B-)",
    "AB+": "AB Positive (AB+)",
    "AB-": "AB Negative (AB-)",
    "O+": "O Positive (O+)",
    "O-": "O Negative (O-)",
}


class InventoryService:
    def __init__(self, db: Database, donors: DonorRegistry = None, requests: RequestQueue = None):
        self.donors = donors or DonorRegistry(db)
        self.requests = requests or RequestQueue(db)

    @log_failures("Error fetching blood availability")
    def get_blood_availability(self) -> List[BloodAvailability]:
        """
        One entry per canonical blood type.

        `available` counts donor profiles of that type (one unit per donor,
        regardless of eligibility), `requested` sums the units of pending
        requests, and `net` is the difference.
        """
        available = Counter(d.get("blood_type") for d in self.donors.get_all())
        requested: Counter = Counter()
        for req in self.requests.get_pending():
            requested[req.get("blood_type")] += int(req.get("units_needed") or 0)

        now = utcnow()
        return [
            BloodAvailability(
                blood_type=bt,
                available=available[bt],
                requested=requested[bt],
                net=available[bt] - requested[bt],
                last_updated=now,
            )
            for bt in BLOOD_TYPES
        ]

    @staticmethod
    def get_compatibility_chart() -> Dict[str, List[str]]:
        return {recipient: list(donors) for recipient, donors in COMPATIBILITY_CHART.items()}

    @staticmethod
    def get_blood_type_display() -> Dict[str, str]:
        return dict(BLOOD_TYPE_DISPLAY)

    @staticmethod
    def compatible_donor_types(recipient_type: str) -> List[str]:
        if recipient_type not in COMPATIBILITY_CHART:
            raise ValidationFailure(f"Unknown blood type: {recipient_type}")
        return list(COMPATIBILITY_CHART[recipient_type])
