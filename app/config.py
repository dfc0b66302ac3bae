import os
import sys
from dotenv import load_dotenv

load_dotenv()

BOT_TOKEN = os.getenv("BOT_TOKEN")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL")

if not DATABASE_URL:
    print("❌ CRITICAL ERROR: DATABASE_URL is missing!")
    sys.exit(1)

# Ensure async driver usage for SQLAlchemy compatibility
if DATABASE_URL.startswith("postgresql://"):
    DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://", 1)

if not BOT_TOKEN:
    print("⚠️ WARNING: BOT_TOKEN is missing. Requests cannot be authenticated.")

# --- Insight engine ---
INSIGHT_WINDOW_DAYS = int(os.getenv("INSIGHT_WINDOW_DAYS", "30"))
INSIGHT_DEDUP_HOURS = int(os.getenv("INSIGHT_DEDUP_HOURS", "24"))
INSIGHT_RETENTION_LIMIT = int(os.getenv("INSIGHT_RETENTION_LIMIT", "5"))
INSIGHT_LIST_LIMIT = int(os.getenv("INSIGHT_LIST_LIMIT", "6"))
