import os
import json
from dotenv import load_dotenv

load_dotenv() # Optional: Load .env file

DATABASE_USER = os.getenv("POSTGRES_USER", "user")
DATABASE_PASSWORD = os.getenv("POSTGRES_PASSWORD", "password")
DATABASE_HOST = os.getenv("POSTGRES_HOST", "postgres") # Docker service name
DATABASE_PORT = os.getenv("POSTGRES_PORT", "5432")
DATABASE_NAME = os.getenv("POSTGRES_DB", "store_db")

# Async database URL for SQLAlchemy (full override wins)
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+asyncpg://{DATABASE_USER}:{DATABASE_PASSWORD}@{DATABASE_HOST}:{DATABASE_PORT}/{DATABASE_NAME}",
)
DATABASE_ECHO = os.getenv("DATABASE_ECHO", "false").lower() == "true"

APP_HOST = os.getenv("APP_HOST", "0.0.0.0")
APP_PORT = int(os.getenv("APP_PORT", "8002")) # Port for this service
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# --- Shipping defaults (used when no shipping zone matches) ---
DEFAULT_BASE_RATE = float(os.getenv("DEFAULT_BASE_RATE", "150"))
DEFAULT_REGION_MULTIPLIER = float(os.getenv("DEFAULT_REGION_MULTIPLIER", "1.0"))
EXPRESS_MULTIPLIER = float(os.getenv("EXPRESS_MULTIPLIER", "1.5"))
DEFAULT_FREE_SHIPPING_THRESHOLD = float(os.getenv("DEFAULT_FREE_SHIPPING_THRESHOLD", "5000"))
PER_KG_RATE = float(os.getenv("PER_KG_RATE", "30")) # Weight charge without zone tiers

# Multiplier per product shipping class; unknown classes count as 1.0
SHIPPING_CLASS_SURCHARGES = json.loads(
    os.getenv("SHIPPING_CLASS_SURCHARGES", '{"standard": 1.0, "fragile": 1.2, "oversized": 1.5}')
)

# --- Site setting keys ---
FREE_SHIPPING_SETTING_KEY = "ENABLE_GLOBAL_FREE_SHIPPING"
COD_FEE_SETTING_KEY = "COD_FEE"

DEFAULT_DEAL_VARIANT = "MAIN"
