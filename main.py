import logging
import random
import re
import time
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional

import jwt
from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from fastapi.staticfiles import StaticFiles
from passlib.context import CryptContext
from pydantic import Field
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.middleware.base import BaseHTTPMiddleware

import chat
import config
from badges import BadgeService
from dao import DaoService
from database import create_document, ensure_indexes, get_db, now_utc, serialize
from donations import DonationService, store_photo
from errors import AppError, NotFound, SettlementError, ValidationFailed
from ledger import CYCLE_BADGE, Ledger
from locations import list_locations, nearby_centers
from logs import DEFAULT_LIMIT, DailyLogStore
from phases import estimate_phase, to_date
from quiz import ARTICLES, LEVELS, QuizEngine, daily_challenges, get_level, public_questions
from schemas import ApiModel, DailyLogEntry, DonationSubmission, Location, User
from settlement import SolanaSettlement

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        ensure_indexes(get_db())
    except PyMongoError as e:
        logger.warning("Could not ensure indexes: %s", e)
    yield


app = FastAPI(title="ThinkPink API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.mount("/uploads", StaticFiles(directory=config.UPLOAD_DIR, check_dir=False), name="uploads")

security = HTTPBearer()


# --- Error mapping ---

@app.exception_handler(SettlementError)
async def settlement_error_handler(request: Request, exc: SettlementError):
    logger.error("Settlement failed on %s: %s", request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.public_message})


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    content = {"detail": exc.message}
    if hasattr(exc, "balance"):
        content["balance"] = exc.balance
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(PyMongoError)
async def storage_error_handler(request: Request, exc: PyMongoError):
    logger.exception("Storage error on %s", request.url.path)
    return JSONResponse(status_code=503, content={"detail": "Something went wrong saving your data. Please try again."})


# --- Dependencies ---

_settlement = None


def get_settlement():
    global _settlement
    if _settlement is None:
        _settlement = SolanaSettlement()
    return _settlement


def get_ledger(db=Depends(get_db)) -> Ledger:
    return Ledger(db)


def get_log_store(db=Depends(get_db)) -> DailyLogStore:
    return DailyLogStore(db)


def get_badges(db=Depends(get_db), ledger: Ledger = Depends(get_ledger), settlement=Depends(get_settlement)):
    return BadgeService(db, ledger, settlement)


def get_donations(db=Depends(get_db), ledger: Ledger = Depends(get_ledger), badges=Depends(get_badges)):
    return DonationService(db, ledger, badges)


def get_dao(db=Depends(get_db), settlement=Depends(get_settlement)):
    return DaoService(db, settlement)


# --- Helpers ---

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def create_tokens(user: dict) -> Dict[str, str]:
    payload = {"sub": user["user_id"], "roles": user.get("roles", ["user"]), "exp": now_utc() + timedelta(minutes=config.ACCESS_TTL_MIN), "type": "access"}
    access = jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALG)
    refresh = jwt.encode({"sub": user["user_id"], "type": "refresh", "exp": now_utc() + timedelta(days=config.REFRESH_TTL_DAYS)}, config.JWT_SECRET, algorithm=config.JWT_ALG)
    return {"access": access, "refresh": refresh}


def public_user(user: dict) -> dict:
    out = serialize(user)
    out.pop("password_hash", None)
    out.pop("name_lower", None)
    return out


def get_current_user(creds: HTTPAuthorizationCredentials = Depends(security), db=Depends(get_db)):
    try:
        data = jwt.decode(creds.credentials, config.JWT_SECRET, algorithms=[config.JWT_ALG])
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    if data.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token type")
    user = db["user"].find_one({"user_id": data["sub"]})
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def require_roles(*roles):
    def wrapper(user=Depends(get_current_user)):
        user_roles = user.get("roles", [])
        if any(r in user_roles for r in roles):
            return user
        raise HTTPException(status_code=403, detail="Forbidden")
    return wrapper


def parse_day(value: Optional[str]) -> date:
    if not value:
        return datetime.now(timezone.utc).date()
    try:
        return to_date(value)
    except ValueError:
        raise ValidationFailed(f"Invalid date: {value}")


# --- Schemas for requests ---

class SignupPayload(ApiModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    wallet: str = ""
    pronouns: str = ""


class SigninPayload(ApiModel):
    username: str
    password: str


class ChangePasswordPayload(ApiModel):
    current_password: str
    new_password: str = Field(..., min_length=1)


class SyncPayload(ApiModel):
    name: Optional[str] = None
    wallet: Optional[str] = None
    pronouns: Optional[str] = None


class RedeemPayload(ApiModel):
    user_id: str
    points_cost: int = Field(..., gt=0)


class QuizSubmitPayload(ApiModel):
    user_id: str
    answers: Dict[str, str]


class ArticleReadPayload(ApiModel):
    user_id: str
    article_id: str


class ChallengeCompletePayload(ApiModel):
    user_id: str
    challenge_id: str
    date_iso: Optional[str] = Field(None, alias="dateISO")


class AwardBadgePayload(ApiModel):
    user_id: str
    wallet_address: str = Field(..., min_length=1)
    badge_id: str = CYCLE_BADGE


class AwardPointsPayload(ApiModel):
    user_id: str
    wallet_address: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0)


class RedeemOnChainPayload(ApiModel):
    user_id: str
    wallet_address: str = Field(..., min_length=1)
    points_cost: int = Field(..., gt=0)


class BurnTxPayload(ApiModel):
    wallet_address: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0)


class OptionPayload(ApiModel):
    key: str
    label: Optional[str] = None


class ProposalPayload(ApiModel):
    title: str
    description: str = ""
    options: List[OptionPayload]


class VotePayload(ApiModel):
    proposal_id: str
    option_key: str
    wallet_address: str
    min_pnk: int = Field(1, alias="minPNK")


class ChatPayload(ApiModel):
    message: str = Field(..., min_length=1)
    user_id: str = "guest"
    today_iso: Optional[str] = Field(None, alias="todayISO")


# --- Routes ---

@app.get("/")
def root():
    return {"name": "ThinkPink API", "status": "ok"}


@app.get("/health")
def health():
    return {"ok": True}


# Accounts
@app.post("/api/users/signup")
def signup(payload: SignupPayload, db=Depends(get_db)):
    name = payload.username.strip()
    if db["user"].find_one({"name_lower": name.lower()}):
        raise HTTPException(status_code=400, detail="Username exists")
    roles = ["user", "admin"] if name.lower() in config.ADMIN_USERNAMES else ["user"]
    slug = re.sub(r"\s+", "_", name.lower())
    for _ in range(5):
        user = User(
            user_id=f"{slug}_{random.randint(100, 999)}",
            name=name,
            name_lower=name.lower(),
            pronouns=payload.pronouns,
            password_hash=hash_password(payload.password),
            wallet=payload.wallet,
            roles=roles,
        ).model_dump(exclude={"created_at", "updated_at"})
        try:
            create_document(db, "user", user)
            break
        except DuplicateKeyError:
            if db["user"].find_one({"name_lower": name.lower()}):
                raise HTTPException(status_code=400, detail="Username exists")
    else:
        raise HTTPException(status_code=500, detail="Could not allocate a user id")
    logger.info("New account %s", user["user_id"])
    return {"user": public_user(user), "tokens": create_tokens(user)}


@app.post("/api/users/signin")
def signin(payload: SigninPayload, db=Depends(get_db)):
    user = db["user"].find_one({"name_lower": payload.username.strip().lower()})
    if not user or not verify_password(payload.password, user["password_hash"]):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return {"user": public_user(user), "tokens": create_tokens(user)}


@app.post("/api/users/change-password")
def change_password(payload: ChangePasswordPayload, user=Depends(get_current_user), db=Depends(get_db)):
    if not verify_password(payload.current_password, user["password_hash"]):
        raise HTTPException(status_code=401, detail="Current password is incorrect")
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"password_hash": hash_password(payload.new_password), "updated_at": now_utc()}})
    return {"ok": True, "message": "Password updated successfully"}


@app.post("/api/users/sync")
def sync_user(payload: SyncPayload, user=Depends(get_current_user), db=Depends(get_db)):
    """Update the caller's own profile. Passwords change only through change-password."""
    updates = {}
    if payload.name is not None:
        updates["name"] = payload.name
        updates["name_lower"] = payload.name.lower()
    if payload.wallet is not None:
        updates["wallet"] = payload.wallet
    if payload.pronouns is not None:
        updates["pronouns"] = payload.pronouns
    updates["updated_at"] = now_utc()
    try:
        db["user"].update_one({"_id": user["_id"]}, {"$set": updates})
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Username exists")
    return public_user(db["user"].find_one({"_id": user["_id"]}))


@app.get("/api/users/me")
def me(user=Depends(get_current_user)):
    return public_user(user)


# Daily logs
@app.post("/logs/save")
def save_log(entry: DailyLogEntry, store: DailyLogStore = Depends(get_log_store)):
    return {"ok": True, "log": store.save(entry)}


@app.get("/logs/recent")
def recent_logs(user_id: str = Query(..., alias="userId", min_length=1),
                limit: int = Query(DEFAULT_LIMIT, ge=1),
                store: DailyLogStore = Depends(get_log_store)):
    return {"ok": True, "logs": store.fetch_recent(user_id, limit)}


@app.get("/logs/day")
def day_log(user_id: str = Query(..., alias="userId", min_length=1),
            date_iso: Optional[str] = Query(None, alias="date"),
            store: DailyLogStore = Depends(get_log_store)):
    day = parse_day(date_iso)
    return {"ok": True, "log": store.get_day(user_id, day.isoformat())}


@app.get("/cycle/estimate")
def cycle_estimate(user_id: Optional[str] = Query(None, alias="userId"),
                   date_iso: Optional[str] = Query(None, alias="date"),
                   store: DailyLogStore = Depends(get_log_store)):
    day = parse_day(date_iso)
    last_start = store.last_period_start(user_id, day.isoformat()) if user_id else None
    estimate = estimate_phase(day, last_start)
    return {"date": day.isoformat(), "last_period_start": last_start, **estimate.model_dump()}


# Progress and points
@app.get("/progress/{user_id}")
def progress(user_id: str, ledger: Ledger = Depends(get_ledger)):
    state = ledger.get(user_id)
    return {**state.model_dump(), "cycle_badge_unlocked": state.cycle_badge_unlocked}


@app.get("/points/{user_id}")
def points(user_id: str, ledger: Ledger = Depends(get_ledger)):
    return {"ok": True, "points": ledger.balance(user_id)}


@app.post("/points/redeem")
def redeem_points(payload: RedeemPayload, ledger: Ledger = Depends(get_ledger)):
    after = ledger.add_points(payload.user_id, -payload.points_cost)
    return {"ok": True, "points_spent": payload.points_cost, "points_after": after}


# Quizzes, articles, challenges
@app.get("/quiz/levels")
def quiz_levels():
    return {"levels": [{"id": l.id, "topic": l.topic, "level": l.level, "reward": l.reward,
                        "questions": len(l.questions), "unlocks_badge": l.unlocks_badge} for l in LEVELS.values()]}


@app.get("/quiz/{level_id}")
def quiz(level_id: str):
    level = get_level(level_id)
    return {"id": level.id, "topic": level.topic, "level": level.level, "questions": public_questions(level)}


@app.post("/quiz/{level_id}/submit")
def submit_quiz(level_id: str, payload: QuizSubmitPayload, ledger: Ledger = Depends(get_ledger)):
    return QuizEngine(ledger).grade(payload.user_id, level_id, payload.answers)


@app.get("/articles")
def articles():
    return {"articles": [a.model_dump() for a in ARTICLES.values()]}


@app.post("/articles/read")
def read_article(payload: ArticleReadPayload, ledger: Ledger = Depends(get_ledger)):
    return QuizEngine(ledger).read_article(payload.user_id, payload.article_id)


@app.get("/challenges/daily")
def challenges(date_iso: Optional[str] = Query(None, alias="date")):
    day = parse_day(date_iso)
    return {"date": day.isoformat(), "challenges": [c.model_dump() for c in daily_challenges(day)]}


@app.post("/challenges/complete")
def complete_challenge(payload: ChallengeCompletePayload, ledger: Ledger = Depends(get_ledger)):
    day = parse_day(payload.date_iso)
    return QuizEngine(ledger).complete_challenge(payload.user_id, payload.challenge_id, day)


# Solana
@app.post("/solana/award-badge")
def award_badge(payload: AwardBadgePayload, badges: BadgeService = Depends(get_badges)):
    return badges.mint(payload.user_id, payload.wallet_address, payload.badge_id)


@app.post("/solana/award-points")
def award_points(payload: AwardPointsPayload, ledger: Ledger = Depends(get_ledger), settlement=Depends(get_settlement)):
    ledger.reserve_mirror(payload.user_id, payload.amount)
    try:
        return settlement.award_points(payload.wallet_address, payload.amount)
    except AppError:
        ledger.release_mirror(payload.user_id, payload.amount)
        raise


@app.post("/solana/redeem-points")
def redeem_on_chain(payload: RedeemOnChainPayload, ledger: Ledger = Depends(get_ledger), settlement=Depends(get_settlement)):
    cost = payload.points_cost
    ledger.reserve(payload.user_id, cost)
    try:
        receipt = settlement.pay_out_redemption(payload.wallet_address, cost)
    except AppError:
        ledger.release(payload.user_id, cost)
        raise
    ledger.confirm(payload.user_id, cost)
    return {"ok": True, **receipt, "points_spent": cost, "points_after": ledger.balance(payload.user_id)}


@app.post("/solana/build-burn-tx")
def build_burn_tx(payload: BurnTxPayload, settlement=Depends(get_settlement)):
    return settlement.build_burn_transaction(payload.wallet_address, payload.amount)


@app.get("/solana/points-mint")
def points_mint(settlement=Depends(get_settlement)):
    if not settlement.points_mint:
        raise NotFound("POINTS_MINT not set")
    return {"points_mint": settlement.points_mint}


@app.post("/solana/points-mint")
def create_points_mint(settlement=Depends(get_settlement), admin=Depends(require_roles("admin"))):
    if settlement.points_mint:
        return {"points_mint": settlement.points_mint, "created": False}
    mint = settlement.create_points_mint()
    logger.info("Created points mint %s; set POINTS_MINT to keep it across restarts", mint)
    return {"points_mint": mint, "created": True}


# Donations and centers
@app.post("/impact/submit-donation")
async def submit_donation(
    request: Request,
    user_id: str = Form(..., alias="userId"),
    wallet_address: str = Form("", alias="walletAddress"),
    place_id: str = Form(..., alias="placeId"),
    place_name: str = Form(..., alias="placeName"),
    address: str = Form(...),
    lat: float = Form(...),
    lng: float = Form(...),
    photo: UploadFile = File(...),
    donations: DonationService = Depends(get_donations),
):
    stored = store_photo(photo.filename, await photo.read())
    base = config.PUBLIC_BASE_URL.rstrip("/") or str(request.base_url).rstrip("/")
    submission = DonationSubmission(
        user_id=user_id,
        wallet_address=wallet_address,
        place_id=place_id,
        place_name=place_name,
        address=address,
        lat=lat,
        lng=lng,
        image_url=f"{base}/uploads/{stored['filename']}",
        proof_hash=stored["proof_hash"],
    )
    return {"ok": True, "submission": donations.submit(submission)}


@app.get("/impact/submissions")
def submissions(status: Optional[str] = Query(None, pattern="^(pending|approved|rejected)$"),
                donations: DonationService = Depends(get_donations), admin=Depends(require_roles("admin"))):
    return {"ok": True, "submissions": donations.list(status)}


@app.post("/impact/submissions/{submission_id}/approve")
def approve_submission(submission_id: str, donations: DonationService = Depends(get_donations),
                       admin=Depends(require_roles("admin"))):
    return {"ok": True, **donations.approve(submission_id)}


@app.post("/impact/submissions/{submission_id}/reject")
def reject_submission(submission_id: str, donations: DonationService = Depends(get_donations),
                      admin=Depends(require_roles("admin"))):
    return {"ok": True, "submission": donations.reject(submission_id)}


@app.get("/impact/nearby-centers")
def centers(lat: float = Query(..., ge=-90, le=90), lng: float = Query(..., ge=-180, le=180), db=Depends(get_db)):
    return {"ok": True, "centers": nearby_centers(db, lat, lng)}


@app.get("/locations")
def locations(db=Depends(get_db)):
    return list_locations(db)


@app.post("/locations")
def add_location(location: Location, db=Depends(get_db), admin=Depends(require_roles("admin"))):
    lid = create_document(db, "location", location.model_dump())
    return {"ok": True, "id": lid}


# DAO
@app.post("/dao/create")
def create_proposal(payload: ProposalPayload, dao: DaoService = Depends(get_dao), admin=Depends(require_roles("admin"))):
    proposal = dao.create(payload.title, payload.description, [o.model_dump() for o in payload.options])
    return {"ok": True, "proposal": proposal}


@app.get("/dao/list")
def list_proposals(dao: DaoService = Depends(get_dao)):
    return {"ok": True, "proposals": dao.list()}


@app.post("/dao/vote")
def vote(payload: VotePayload, dao: DaoService = Depends(get_dao)):
    return {"ok": True, **dao.vote(payload.proposal_id, payload.option_key, payload.wallet_address, payload.min_pnk)}


@app.post("/dao/{proposal_id}/close")
def close_proposal(proposal_id: str, dao: DaoService = Depends(get_dao), admin=Depends(require_roles("admin"))):
    return {"ok": True, "proposal": dao.close(proposal_id)}


# Chat
@app.post("/chat/cycle")
def cycle_chat(payload: ChatPayload, store: DailyLogStore = Depends(get_log_store)):
    today = parse_day(payload.today_iso)
    return chat.answer(store, payload.user_id, payload.message, today.isoformat())


# Rate limiting per client IP and path, kept in process memory.
requests_counter: Dict[str, List[float]] = {}


def prune_requests(now: float) -> None:
    """Forget timestamps outside the window and keys left with none."""
    for key in list(requests_counter):
        recent = [t for t in requests_counter[key] if now - t < config.RATE_LIMIT_WINDOW]
        if recent:
            requests_counter[key] = recent
        else:
            del requests_counter[key]


class RateLimitMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        now = time.time()
        prune_requests(now)
        host = request.client.host if request.client else "unknown"
        recent = requests_counter.setdefault(f"{host}:{request.url.path}", [])
        recent.append(now)
        if len(recent) > config.RATE_LIMIT_MAX:
            return Response(status_code=429)
        return await call_next(request)


app.add_middleware(RateLimitMiddleware)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
