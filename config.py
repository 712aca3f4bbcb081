import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Default to a local SQLite file next to where the app is started
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///finance_analyzer.db")

MODEL_PATH = Path(os.getenv("MODEL_PATH", "models/vendor_classifier.pkl"))

CURRENCY = os.getenv("CURRENCY", "SEK")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE")  # unset -> console only
