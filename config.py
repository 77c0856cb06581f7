import os

from dotenv import load_dotenv

load_dotenv()

# --- Database ---
DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "thinkpink")

# --- Auth ---
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret")
JWT_ALG = "HS256"
ACCESS_TTL_MIN = int(os.getenv("ACCESS_TTL_MIN", "60"))
REFRESH_TTL_DAYS = int(os.getenv("REFRESH_TTL_DAYS", "30"))
ADMIN_USERNAMES = [u.strip().lower() for u in os.getenv("ADMIN_USERNAMES", "").split(",") if u.strip()]

# --- Uploads ---
UPLOAD_DIR = os.getenv("UPLOAD_DIR", os.path.join(os.getcwd(), "uploads"))
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "")

# --- Solana ---
SOLANA_CLUSTER = os.getenv("SOLANA_CLUSTER", "devnet")
SOLANA_RPC_URL = os.getenv("SOLANA_RPC_URL", f"https://api.{SOLANA_CLUSTER}.solana.com")
SOLANA_KEYPAIR_PATH = os.getenv("SOLANA_KEYPAIR_PATH", "./server-wallet.json")
SOLANA_TIMEOUT = float(os.getenv("SOLANA_TIMEOUT", "20"))
BADGE_MINT = os.getenv("BADGE_MINT", "")
IMPACT_BADGE_MINT = os.getenv("IMPACT_BADGE_MINT", "")
POINTS_MINT = os.getenv("POINTS_MINT", "")
# 0.00001 SOL per point
REDEEM_LAMPORTS_PER_POINT = int(os.getenv("REDEEM_LAMPORTS_PER_POINT", "10000"))

# --- Rewards ---
DONATION_REWARD = int(os.getenv("DONATION_REWARD", "100"))

# --- Rate limiting ---
RATE_LIMIT_WINDOW = int(os.getenv("RATE_LIMIT_WINDOW", "60"))
RATE_LIMIT_MAX = int(os.getenv("RATE_LIMIT_MAX", "120"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", "8000"))
