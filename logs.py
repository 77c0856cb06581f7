import logging
from datetime import date
from typing import Dict, List, Optional

from pymongo import DESCENDING, ReturnDocument

from database import now_utc, serialize
from phases import estimate_phase
from schemas import DailyLogEntry

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 60
MAX_LIMIT = 120


class DailyLogStore:
    """Daily cycle logs keyed by (user_id, date_iso)."""

    collection_name = "cycle_log"

    def __init__(self, db):
        self.col = db[self.collection_name]

    def save(self, entry: DailyLogEntry) -> Dict:
        doc = entry.to_document()
        last_start = self.last_period_start(entry.user_id, doc["date_iso"], inclusive=False)
        if entry.period_start:
            last_start = doc["date_iso"]
        estimate = estimate_phase(doc["date_iso"], last_start)
        doc["phase"] = estimate.phase
        doc["cycle_day"] = estimate.cycle_day
        doc["updated_at"] = now_utc()

        saved = self.col.find_one_and_update(
            {"user_id": entry.user_id, "date_iso": doc["date_iso"]},
            {"$set": doc, "$setOnInsert": {"created_at": doc["updated_at"]}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        logger.debug("Saved log for %s on %s", entry.user_id, doc["date_iso"])
        return serialize(saved)

    def fetch_recent(self, user_id: str, limit: int = DEFAULT_LIMIT) -> List[Dict]:
        limit = max(1, min(int(limit), MAX_LIMIT))
        cursor = self.col.find({"user_id": user_id}).sort("date_iso", DESCENDING).limit(limit)
        return [serialize(d) for d in cursor]

    def get_day(self, user_id: str, date_iso: str) -> Dict:
        doc = self.col.find_one({"user_id": user_id, "date_iso": date_iso})
        if doc:
            return serialize(doc)
        blank = DailyLogEntry(user_id=user_id, date_iso=date.fromisoformat(date_iso))
        return blank.to_document()

    def last_period_start(self, user_id: str, on_or_before: Optional[str] = None,
                          inclusive: bool = True) -> Optional[str]:
        query = {"user_id": user_id, "period_start": True}
        if on_or_before:
            query["date_iso"] = {"$lte" if inclusive else "$lt": on_or_before}
        doc = self.col.find_one(query, sort=[("date_iso", DESCENDING)])
        return doc["date_iso"] if doc else None

    def merge_signal(self, user_id: str, date_iso: str, symptoms: List[str], note: Optional[str]) -> Dict:
        """Fold symptoms and a note line into a day's log, creating it if needed."""
        existing = self.col.find_one({"user_id": user_id, "date_iso": date_iso})
        if existing is None:
            entry = DailyLogEntry(
                user_id=user_id,
                date_iso=date.fromisoformat(date_iso),
                symptoms=symptoms,
                notes=note or "",
            )
            return self.save(entry)

        update: Dict = {"$set": {"updated_at": now_utc()}}
        if symptoms:
            update["$addToSet"] = {"symptoms": {"$each": symptoms}}
        notes = existing.get("notes") or ""
        if note and note not in notes:
            update["$set"]["notes"] = f"{notes}\n{note}" if notes else note
        saved = self.col.find_one_and_update(
            {"_id": existing["_id"]}, update, return_document=ReturnDocument.AFTER
        )
        return serialize(saved)
