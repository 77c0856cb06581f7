import logging
from typing import Dict, List

from pymongo import DESCENDING, ReturnDocument

from database import create_document, now_utc, object_id, serialize
from errors import NotEligible, NotFound, StateConflict, ValidationFailed
from schemas import Proposal, ProposalOption

logger = logging.getLogger(__name__)


class DaoService:
    """Community proposals; voting requires holding points tokens on chain."""

    collection_name = "proposal"

    def __init__(self, db, settlement):
        self.db = db
        self.col = db[self.collection_name]
        self.settlement = settlement

    def create(self, title: str, description: str, options: List[Dict]) -> Dict:
        if not title:
            raise ValidationFailed("title is required")
        opts = [ProposalOption(key=o["key"], label=o.get("label") or o["key"]) for o in options if o.get("key")]
        if len(opts) < 2:
            raise ValidationFailed("at least two options are required")
        if len({o.key for o in opts}) != len(opts):
            raise ValidationFailed("option keys must be unique")
        proposal = Proposal(title=title, description=description or "", options=opts)
        pid = create_document(self.db, self.collection_name, proposal.model_dump())
        return self.get(pid)

    def get(self, proposal_id: str) -> Dict:
        oid = object_id(proposal_id)
        doc = self.col.find_one({"_id": oid}) if oid else None
        if doc is None:
            raise NotFound("proposal not found")
        return serialize(doc)

    def list(self, limit: int = 20) -> List[Dict]:
        return [serialize(d) for d in self.col.find({}).sort("created_at", DESCENDING).limit(limit)]

    def vote(self, proposal_id: str, option_key: str, wallet_address: str, min_pnk: int = 1) -> Dict:
        if not proposal_id or not option_key or not wallet_address:
            raise ValidationFailed("proposalId, optionKey, walletAddress required")

        proposal = self.get(proposal_id)
        if not proposal.get("is_open"):
            raise StateConflict("proposal closed")
        keys = [o["key"] for o in proposal.get("options", [])]
        if option_key not in keys:
            raise ValidationFailed("invalid option")

        balance = self.settlement.points_balance(wallet_address)
        if balance < min_pnk:
            raise NotEligible(f"Need at least {min_pnk} PNK to vote")

        idx = keys.index(option_key)
        doc = self.col.find_one_and_update(
            {"_id": object_id(proposal_id), "is_open": True},
            {"$inc": {f"options.{idx}.votes": 1}, "$set": {"updated_at": now_utc()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise StateConflict("proposal closed")
        logger.info("Vote on %s for %s from %s", proposal_id, option_key, wallet_address)
        return {"proposal": serialize(doc), "balance": balance}

    def close(self, proposal_id: str) -> Dict:
        self.get(proposal_id)
        doc = self.col.find_one_and_update(
            {"_id": object_id(proposal_id)},
            {"$set": {"is_open": False, "updated_at": now_utc()}},
            return_document=ReturnDocument.AFTER,
        )
        return serialize(doc)
