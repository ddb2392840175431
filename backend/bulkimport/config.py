import os

# ---------- Config ----------
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./bulkimport.db")

# Zone used for created_at/updated_at stamping ("local" = host zone)
DEFAULT_TIMEZONE = os.getenv("BULKIMPORT_TIMEZONE", "UTC")

# Hard ceiling for one INSERT statement; unset means "ask the database"
_limit = os.getenv("BULKIMPORT_BATCH_BYTE_LIMIT", "").strip()
BATCH_BYTE_LIMIT: int | None = int(_limit) if _limit.isdigit() else None

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
