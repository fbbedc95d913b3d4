# app/config.py
import os
from decimal import Decimal

# DB selection: prefer DATABASE_URL (e.g. hosted Postgres), fallback to sqlite file
DB_PATH = "dairy.db"
DB_URL = os.getenv("DATABASE_URL", f"sqlite:///{DB_PATH}")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# gestation length used to predict calving from the AI date
COW_GESTATION_DAYS = int(os.getenv("COW_GESTATION_DAYS", "283"))
BUFFALO_GESTATION_DAYS = int(os.getenv("BUFFALO_GESTATION_DAYS", "310"))

# readings above either cow limit are treated as buffalo milk
COW_MAX_FAT = Decimal(os.getenv("COW_MAX_FAT", "5.0"))
COW_MAX_SNF = Decimal(os.getenv("COW_MAX_SNF", "9.0"))
