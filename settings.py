import logging
import os


# --- Config ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

logging.basicConfig(level=LOG_LEVEL)

# -----------------------------
# Analysis thresholds
# -----------------------------
VALID_ROW_RATIO_MIN = float(os.getenv("VALID_ROW_RATIO_MIN", "0.8"))   # share of non-empty rows
ISSUE_RATIO_MAX = float(os.getenv("ISSUE_RATIO_MAX", "0.1"))           # non-missing issues / total rows
MIN_COLUMNS = int(os.getenv("MIN_COLUMNS", "2"))
PHONE_MIN_DIGITS = int(os.getenv("PHONE_MIN_DIGITS", "8"))

# -----------------------------
# Report thresholds (percentages)
# -----------------------------
COMPLETENESS_MIN = float(os.getenv("COMPLETENESS_MIN", "90"))
ACCURACY_MIN = float(os.getenv("ACCURACY_MIN", "95"))
MAX_COLUMNS_RECOMMENDED = int(os.getenv("MAX_COLUMNS_RECOMMENDED", "20"))

# -----------------------------
# Cleaning sentinels
# -----------------------------
NOT_PROVIDED = os.getenv("NOT_PROVIDED", "Non renseigné")
SENTINEL_EMAIL = os.getenv("SENTINEL_EMAIL", "non-renseigne@exemple.fr")

# -----------------------------
# Row store (Supabase)
# -----------------------------
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_KEY = os.getenv("SUPABASE_KEY", "")
MEDECIN_TABLE = os.getenv("MEDECIN_TABLE", "medecin")

# -----------------------------
# Blob store (GCS)
# -----------------------------
UPLOAD_BUCKET = os.getenv("UPLOAD_BUCKET", "uploaded-files")
SIGNING_SA_EMAIL = os.getenv("SIGNING_SA_EMAIL", "")
SIGNED_URL_TTL_MINUTES = int(os.getenv("SIGNED_URL_TTL_MINUTES", "30"))

# -----------------------------
# Geocoding
# -----------------------------
GOOGLE_MAPS_API_KEY = os.getenv("GOOGLE_MAPS_API_KEY", "")
GEOCODE_URL = os.getenv("GEOCODE_URL", "https://maps.googleapis.com/maps/api/geocode/json")
GEOCODE_TIMEOUT_SECS = float(os.getenv("GEOCODE_TIMEOUT_SECS", "5"))
