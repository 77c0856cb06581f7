import logging
from typing import Dict

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import now_utc
from errors import InsufficientPoints, ValidationFailed
from schemas import ProgressState

logger = logging.getLogger(__name__)

CYCLE_BADGE = "cycle_literacy_lv1"
IMPACT_BADGE = "impact_supporter"
BADGES = (CYCLE_BADGE, IMPACT_BADGE)


class Ledger:
    """Per-user points balance and unlock state.

    Every mutation is a single atomic update on the user's progress document,
    so concurrent requests for the same user never lose an increment and a
    debit can never take the balance below zero.
    """

    collection_name = "progress"

    def __init__(self, db):
        self.col = db[self.collection_name]

    def _defaults(self, *skip: str) -> Dict:
        fields = {
            "points": 0,
            "reserved": 0,
            "mirrorable": 0,
            "mirrored": 0,
            "badges": {},
            "completed_levels": [],
            "read_articles": [],
            "completed_daily_challenges": [],
            "donations": [],
            "created_at": now_utc(),
        }
        for name in skip:
            fields.pop(name, None)
        return fields

    def _ensure(self, user_id: str) -> None:
        try:
            self.col.update_one(
                {"user_id": user_id},
                {"$setOnInsert": dict(self._defaults(), user_id=user_id)},
                upsert=True,
            )
        except DuplicateKeyError:
            # lost an insert race; the document exists either way
            pass

    def get(self, user_id: str) -> ProgressState:
        doc = self.col.find_one({"user_id": user_id}) or {"user_id": user_id}
        return ProgressState(**{k: v for k, v in doc.items() if k in ProgressState.model_fields})

    def balance(self, user_id: str) -> int:
        return self.get(user_id).points

    def add_points(self, user_id: str, delta: int) -> int:
        """Apply ``delta`` to the balance and return the new balance.

        Raises InsufficientPoints, leaving the balance untouched, when a debit
        exceeds what the user holds.
        """
        delta = int(delta)
        if delta == 0:
            return self.balance(user_id)

        if delta > 0:
            doc = self.col.find_one_and_update(
                {"user_id": user_id},
                {"$inc": {"points": delta, "mirrorable": delta}, "$setOnInsert": self._defaults("points", "mirrorable")},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
            logger.info("Credited %s points to %s", delta, user_id)
            return doc["points"]

        cost = -delta
        doc = self.col.find_one_and_update(
            {"user_id": user_id, "points": {"$gte": cost}},
            {"$inc": {"points": delta}, "$set": {"updated_at": now_utc()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise InsufficientPoints(self.balance(user_id), cost)
        logger.info("Debited %s points from %s", cost, user_id)
        return doc["points"]

    def set_badge_unlocked(self, user_id: str, badge_id: str, value: bool = True) -> bool:
        """Set a badge flag; returns True only when the stored flag changed."""
        if badge_id not in BADGES:
            raise ValidationFailed(f"Unknown badge: {badge_id}")
        self._ensure(user_id)
        result = self.col.update_one(
            {"user_id": user_id, f"badges.{badge_id}": {"$ne": value}},
            {"$set": {f"badges.{badge_id}": value, "updated_at": now_utc()}},
        )
        return result.modified_count == 1

    def _credit_once(self, user_id: str, field: str, item: str, reward: int) -> bool:
        self._ensure(user_id)
        result = self.col.update_one(
            {"user_id": user_id, field: {"$nin": [item]}},
            {"$addToSet": {field: item}, "$inc": {"points": int(reward), "mirrorable": int(reward)}, "$set": {"updated_at": now_utc()}},
        )
        credited = result.modified_count == 1
        if credited:
            logger.info("Credited %s points to %s for %s %s", reward, user_id, field, item)
        return credited

    def record_level_completion(self, user_id: str, level_id: str, reward: int) -> bool:
        return self._credit_once(user_id, "completed_levels", level_id, reward)

    def record_article_read(self, user_id: str, article_id: str, reward: int) -> bool:
        return self._credit_once(user_id, "read_articles", article_id, reward)

    def record_daily_challenge(self, user_id: str, day_iso: str, challenge_id: str, reward: int) -> bool:
        return self._credit_once(user_id, "completed_daily_challenges", f"{day_iso}:{challenge_id}", reward)

    def record_donation(self, user_id: str, submission_id: str, reward: int) -> bool:
        return self._credit_once(user_id, "donations", submission_id, reward)

    # reserve-then-confirm for redemptions settled on chain

    def reserve(self, user_id: str, amount: int) -> int:
        doc = self.col.find_one_and_update(
            {"user_id": user_id, "points": {"$gte": amount}},
            {"$inc": {"points": -amount, "reserved": amount}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise InsufficientPoints(self.balance(user_id), amount)
        return doc["points"]

    def confirm(self, user_id: str, amount: int) -> None:
        self.col.update_one(
            {"user_id": user_id, "reserved": {"$gte": amount}},
            {"$inc": {"reserved": -amount}, "$set": {"updated_at": now_utc()}},
        )

    def release(self, user_id: str, amount: int) -> None:
        self.col.update_one(
            {"user_id": user_id, "reserved": {"$gte": amount}},
            {"$inc": {"points": amount, "reserved": -amount}},
        )

    # Each earned point can be mirrored to the chain once. ``mirrorable`` grows
    # with every credit and shrinks when tokens are minted for it.

    def reserve_mirror(self, user_id: str, amount: int) -> None:
        doc = self.col.find_one_and_update(
            {"user_id": user_id, "points": {"$gte": amount}, "mirrorable": {"$gte": amount}},
            {"$inc": {"mirrorable": -amount, "mirrored": amount}, "$set": {"updated_at": now_utc()}},
        )
        if doc is None:
            raise ValidationFailed("Cannot mirror more points than the account holds")

    def release_mirror(self, user_id: str, amount: int) -> None:
        self.col.update_one(
            {"user_id": user_id, "mirrored": {"$gte": amount}},
            {"$inc": {"mirrorable": amount, "mirrored": -amount}},
        )
