import os
import sys
from dotenv import load_dotenv

load_dotenv()

AUTH_SECRET = os.getenv("AUTH_SECRET")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
DATABASE_ECHO = os.getenv("DATABASE_ECHO", "false").lower() in ("1", "true", "yes")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

EXCHANGE_RATE_API_URL = os.getenv("EXCHANGE_RATE_API_URL", "https://open.er-api.com/v6/latest/USD")
EXCHANGE_RATE_CACHE_TTL_HOURS = int(os.getenv("EXCHANGE_RATE_CACHE_TTL_HOURS") or 24)
EXCHANGE_RATE_CRON_SECRET = os.getenv("EXCHANGE_RATE_CRON_SECRET")
# Seconds between background refreshes, 0 disables the loop
EXCHANGE_RATE_REFRESH_INTERVAL = int(os.getenv("EXCHANGE_RATE_REFRESH_INTERVAL") or 3600)

DATABASE_URL = os.getenv("DATABASE_URL")

if not DATABASE_URL:
    print("❌ CRITICAL ERROR: DATABASE_URL is missing!")
    sys.exit(1)

# Ensure async driver usage for SQLAlchemy compatibility
if DATABASE_URL.startswith("postgresql://"):
    DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://", 1)

if not AUTH_SECRET:
    print("⚠️ WARNING: AUTH_SECRET is missing. All authenticated requests will be rejected.")
