"""
ThinkPink Database Schemas

Each stored Pydantic model maps to a MongoDB collection (see database.py).
Request bodies accept the mobile client's camelCase keys as well as the
snake_case field names.

Models:
- DailyLogEntry: one cycle log per user per calendar day
- CycleEstimate: derived cycle day + phase, never stored on its own
- ProgressState: points ledger, badge unlocks, completed content
- QuizQuestion / QuizLevel / Article / DailyChallenge: fixed learning catalogue
- DonationSubmission: donation proof under review
- BadgeMint: on-chain badge issued to a wallet
- User: account profile
- Proposal: DAO proposal with vote counts
- Location: donation / health center
"""

from datetime import date, datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

Phase = Literal["menstrual", "follicular", "ovulation", "luteal", "unknown"]
Choice = Literal["A", "B", "C", "D"]
DonationStatus = Literal["pending", "approved", "rejected"]


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DailyLogEntry(ApiModel):
    user_id: str = Field(..., min_length=1)
    date_iso: date = Field(..., alias="dateISO")
    period_start: bool = False
    period_end: bool = False
    spotting: bool = False
    mood: int = Field(3, ge=1, le=5)
    energy: int = Field(3, ge=1, le=5)
    symptoms: List[str] = []
    notes: str = ""

    @field_validator("symptoms")
    @classmethod
    def unique_symptoms(cls, value: List[str]) -> List[str]:
        seen: List[str] = []
        for s in value:
            s = s.strip()
            if s and s not in seen:
                seen.append(s)
        return seen

    def to_document(self) -> dict:
        doc = self.model_dump()
        doc["date_iso"] = self.date_iso.isoformat()
        return doc


class CycleEstimate(BaseModel):
    cycle_day: Optional[int] = Field(None, ge=1)
    phase: Phase
    source: Optional[Literal["last_period_start", "anchor"]] = None


class ProgressState(BaseModel):
    user_id: str
    points: int = Field(0, ge=0)
    reserved: int = Field(0, ge=0)
    mirrored: int = Field(0, ge=0)
    badges: Dict[str, bool] = {}
    completed_levels: List[str] = []
    read_articles: List[str] = []
    completed_daily_challenges: List[str] = []

    @property
    def cycle_badge_unlocked(self) -> bool:
        return self.badges.get("cycle_literacy_lv1", False)


class QuizQuestion(BaseModel):
    id: str
    question: str
    choices: Dict[Choice, str]
    answer: Choice
    explanation: str = ""


class QuizLevel(BaseModel):
    id: str
    topic: str
    level: str
    reward: int
    questions: List[QuizQuestion]
    unlocks_badge: Optional[str] = None


class Article(BaseModel):
    id: str
    title: str
    reward: int = 10


class DailyChallenge(BaseModel):
    id: str
    title: str
    description: str
    reward: int = 15


class DonationSubmission(BaseModel):
    user_id: str
    wallet_address: str = ""
    place_id: str
    place_name: str
    address: str
    lat: float
    lng: float
    image_url: str
    proof_hash: str
    status: DonationStatus = "pending"
    points_awarded: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BadgeMint(BaseModel):
    wallet_address: str
    badge_id: str
    status: Literal["pending", "minted"] = "pending"
    mint_address: Optional[str] = None
    signature: Optional[str] = None
    explorer_url: Optional[str] = None


class User(BaseModel):
    user_id: str
    name: str
    name_lower: str
    pronouns: str = ""
    password_hash: str
    wallet: str = ""
    roles: List[str] = ["user"]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProposalOption(BaseModel):
    key: str
    label: str
    votes: int = 0


class Proposal(BaseModel):
    title: str
    description: str = ""
    options: List[ProposalOption] = []
    is_open: bool = True


class Address(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None


class Coordinates(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class Location(BaseModel):
    name: str
    address: Address = Address()
    coordinates: Coordinates
    accepted_items: List[str] = []
    description: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
