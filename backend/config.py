"""
Configuration & Constants for Lead Scout

Everything configurable lives here:
  - AI endpoint and model selection
  - Local storage location and key names
  - Lead generation / retention limits

The credential itself is NOT configured here; it is supplied by the user at
runtime and kept in local storage (see session_controller.py). AI_API_KEY is
only read by the CLI as a convenience pre-seed.
"""

from pathlib import Path
import os
from dotenv import load_dotenv

load_dotenv()

# ===========================================
# Paths
# ===========================================
BASE_DIR = Path(__file__).parent
DATA_DIR = Path(os.getenv("LEADSCOUT_DATA_DIR", str(BASE_DIR / "data")))
STORAGE_FILE = DATA_DIR / "local_storage.json"   # Key/value store (credential + searches)
EXPORT_DIR = DATA_DIR / "exports"

# ===========================================
# Local storage keys
# ===========================================
LOCAL_STORAGE_API_KEY = "leadscout_api_key"
LOCAL_STORAGE_SAVED_SEARCHES = "leadscout_saved_searches"

# ===========================================
# AI Service
# ===========================================
AI_API_KEY = os.getenv("AI_API_KEY", "")
AI_API_BASE = os.getenv("AI_API_BASE", "https://api.openai.com/v1")

# Search-grounded calls (candidates + lead details) need a web-search capable model.
# The email draft works purely on gathered facts, so a cheaper text model is fine.
SEARCH_MODEL = os.getenv("SEARCH_MODEL", "gpt-4o-mini-search-preview")
TEXT_MODEL = os.getenv("TEXT_MODEL", "gpt-4o-mini")

REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "90"))  # seconds
CONNECT_TIMEOUT = 10.0

# ===========================================
# Limits
# ===========================================
MAX_LEADS_TO_GENERATE = int(os.getenv("MAX_LEADS_TO_GENERATE", "10"))
MAX_CONTACTS_PER_LEAD = 3
MAX_SAVED_SEARCHES = 50

# ===========================================
# Logging
# ===========================================
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
