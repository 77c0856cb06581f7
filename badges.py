import logging
from typing import Dict

from pymongo.errors import DuplicateKeyError

from database import now_utc
from errors import NotEligible, SettlementError, StateConflict
from ledger import Ledger
from schemas import BadgeMint

logger = logging.getLogger(__name__)


class BadgeService:
    """Issues each badge at most once per wallet.

    A pending badge_mint row is inserted before the settlement call and is
    confirmed or removed afterwards, so two concurrent requests cannot both
    mint the same badge.
    """

    collection_name = "badge_mint"

    def __init__(self, db, ledger: Ledger, settlement):
        self.col = db[self.collection_name]
        self.ledger = ledger
        self.settlement = settlement

    def mint(self, user_id: str, wallet_address: str, badge_id: str) -> Dict:
        if not self.ledger.get(user_id).badges.get(badge_id):
            raise NotEligible("Badge is not unlocked yet")

        record = BadgeMint(wallet_address=wallet_address, badge_id=badge_id).model_dump()
        record["created_at"] = now_utc()
        try:
            inserted = self.col.insert_one(record)
        except DuplicateKeyError:
            existing = self.col.find_one({"wallet_address": wallet_address, "badge_id": badge_id}) or {}
            if existing.get("status") == "minted":
                raise StateConflict("Badge already minted for this wallet")
            raise StateConflict("Badge mint already in progress")

        try:
            receipt = self.settlement.mint_badge(wallet_address, badge_id)
        except SettlementError:
            self.col.delete_one({"_id": inserted.inserted_id})
            raise

        self.col.update_one(
            {"_id": inserted.inserted_id},
            {"$set": {
                "status": "minted",
                "mint_address": receipt.get("mint"),
                "signature": receipt.get("signature"),
                "explorer_url": receipt.get("explorer_url"),
                "updated_at": now_utc(),
            }},
        )
        logger.info("Minted badge %s to %s", badge_id, wallet_address)
        return receipt
