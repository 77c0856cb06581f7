import hashlib
import logging
import os
import time
from typing import Dict, List, Optional

from pymongo import DESCENDING, ReturnDocument

import config
from badges import BadgeService
from database import create_document, now_utc, object_id, serialize
from errors import NotFound, SettlementError, StateConflict, ValidationFailed
from ledger import IMPACT_BADGE, Ledger
from schemas import DonationSubmission

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".heic"}


def store_photo(filename: str, data: bytes, upload_dir: str = None) -> Dict:
    """Write the donation photo to disk and return its stored name and proof hash."""
    if not data:
        raise ValidationFailed("photo is required")
    ext = os.path.splitext(filename or "")[1].lower() or ".jpg"
    if ext not in ALLOWED_EXTENSIONS:
        raise ValidationFailed(f"Unsupported photo type: {ext}")
    upload_dir = upload_dir or config.UPLOAD_DIR
    os.makedirs(upload_dir, exist_ok=True)
    proof_hash = hashlib.sha256(data).hexdigest()
    stored = f"donation_{int(time.time() * 1000)}_{proof_hash[:8]}{ext}"
    with open(os.path.join(upload_dir, stored), "wb") as fh:
        fh.write(data)
    return {"filename": stored, "proof_hash": proof_hash}


class DonationService:
    collection_name = "donation_submission"

    def __init__(self, db, ledger: Ledger, badges: BadgeService, reward: int = config.DONATION_REWARD):
        self.db = db
        self.col = db[self.collection_name]
        self.ledger = ledger
        self.badges = badges
        self.reward = reward

    def submit(self, submission: DonationSubmission) -> Dict:
        doc = submission.model_dump(exclude={"created_at", "updated_at"})
        doc["status"] = "pending"
        doc["points_awarded"] = False
        sid = create_document(self.db, self.collection_name, doc)
        logger.info("Donation %s submitted by %s", sid, submission.user_id)
        return self.get(sid)

    def get(self, submission_id: str) -> Dict:
        oid = object_id(submission_id)
        doc = self.col.find_one({"_id": oid}) if oid else None
        if doc is None:
            raise NotFound("submission not found")
        return serialize(doc)

    def list(self, status: Optional[str] = None, limit: int = 50) -> List[Dict]:
        query = {"status": status} if status else {}
        cursor = self.col.find(query).sort("created_at", DESCENDING).limit(limit)
        return [serialize(d) for d in cursor]

    def _transition(self, submission_id: str, new_status: str) -> Optional[Dict]:
        oid = object_id(submission_id)
        if oid is None:
            raise NotFound("submission not found")
        return self.col.find_one_and_update(
            {"_id": oid, "status": "pending"},
            {"$set": {"status": new_status, "updated_at": now_utc()}},
            return_document=ReturnDocument.AFTER,
        )

    def approve(self, submission_id: str) -> Dict:
        """Approve a pending submission: credit points once, unlock and mint the impact badge.

        Re-approving only retries a credit that did not land. A failed mint is
        recorded on the submission and leaves the credited points in place.
        """
        doc = self._transition(submission_id, "approved")
        if doc is None:
            current = self.get(submission_id)
            if current["status"] != "approved":
                raise StateConflict(f"submission already {current['status']}")
            awarded = self._credit(current["user_id"], submission_id)
            self.ledger.set_badge_unlocked(current["user_id"], IMPACT_BADGE, True)
            return {"submission": self.get(submission_id), "already_approved": True, "points_awarded": awarded}

        awarded = self._credit(doc["user_id"], submission_id)
        self.ledger.set_badge_unlocked(doc["user_id"], IMPACT_BADGE, True)

        update = {}
        if doc.get("wallet_address"):
            try:
                update["mint"] = self.badges.mint(doc["user_id"], doc["wallet_address"], IMPACT_BADGE)
            except StateConflict as e:
                logger.info("Impact badge not minted for submission %s: %s", submission_id, e.message)
            except (SettlementError, ValidationFailed) as e:
                logger.warning("Impact badge mint failed for submission %s: %s", submission_id, e)
                update["mint_error"] = e.message
        if update:
            self.col.update_one({"_id": doc["_id"]}, {"$set": update})

        logger.info("Donation %s approved, %s points to %s", submission_id, awarded, doc["user_id"])
        return {"submission": self.get(submission_id), "already_approved": False, "points_awarded": awarded}

    def reject(self, submission_id: str) -> Dict:
        doc = self._transition(submission_id, "rejected")
        if doc is None:
            current = self.get(submission_id)
            raise StateConflict(f"submission already {current['status']}")
        return serialize(doc)

    def _credit(self, user_id: str, submission_id: str) -> int:
        if not self.ledger.record_donation(user_id, submission_id, self.reward):
            return 0
        self.col.update_one({"_id": object_id(submission_id)}, {"$set": {"points_awarded": True}})
        return self.reward
