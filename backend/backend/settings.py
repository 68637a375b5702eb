from pathlib import Path
import os
import warnings

# try to import load_dotenv but don't fail if python-dotenv is not installed
try:
    from dotenv import load_dotenv
except Exception:
    load_dotenv = None

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

# load .env file if present (only if python-dotenv is available)
# NOTE: load from project root: <project_root>/.env (where manage.py lives)
if load_dotenv:
    try:
        load_dotenv(dotenv_path=str(BASE_DIR / ".env"))
    except Exception:
        warnings.warn("Failed to load .env via python-dotenv; continuing with os.environ")

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "django-insecure-ledger-local-development-key")

DEBUG = os.getenv("DJANGO_DEBUG", "true").lower() in ("1", "true", "yes")

ALLOWED_HOSTS = []

# Application definition
INSTALLED_APPS = [
    'ledger',
]

MIDDLEWARE = []

# The ledger keeps no relational state; the spreadsheet is the database.
DATABASES = {}

# Internationalization
LANGUAGE_CODE = 'en-us'

TIME_ZONE = os.getenv("TIME_ZONE", 'Africa/Cairo')

USE_I18N = True

USE_TZ = True

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Ledger store
# "sheets" talks to Google Sheets through gspread; "memory" keeps everything in-process.
LEDGER_STORE_BACKEND = os.getenv("LEDGER_STORE_BACKEND", "sheets")
GOOGLE_SERVICE_ACCOUNT_FILE = os.getenv("GOOGLE_SERVICE_ACCOUNT_FILE")
# spreadsheet key or full URL
LEDGER_SPREADSHEET_ID = os.getenv("LEDGER_SPREADSHEET_ID")

# Ledger rules
LEDGER_MAX_TOTAL_FEES = int(os.getenv("LEDGER_MAX_TOTAL_FEES", "1000000"))
LEDGER_MIRROR_NON_CASH_PAYMENTS = os.getenv("LEDGER_MIRROR_NON_CASH_PAYMENTS", "true").lower() in ("1", "true", "yes")
LEDGER_RECENT_ACTIVITY_LIMIT = int(os.getenv("LEDGER_RECENT_ACTIVITY_LIMIT", "20"))
LEDGER_DAILY_SERIES_DAYS = int(os.getenv("LEDGER_DAILY_SERIES_DAYS", "30"))
LEDGER_PARALLEL_READS = os.getenv("LEDGER_PARALLEL_READS", "true").lower() in ("1", "true", "yes")
LEDGER_CURRENCY = os.getenv("LEDGER_CURRENCY", "EGP")
SCHOOL_NAME = os.getenv("SCHOOL_NAME", "RAJAC Language School")
DEFAULT_COUNTRY_CODE = os.getenv("DEFAULT_COUNTRY_CODE", "20")

# WhatsApp Cloud API (payment reminders)
WHATSAPP_ACCESS_TOKEN = os.getenv("WHATSAPP_ACCESS_TOKEN")
WHATSAPP_PHONE_NUMBER_ID = os.getenv("WHATSAPP_PHONE_NUMBER_ID")
WHATSAPP_API_VERSION = os.getenv("WHATSAPP_API_VERSION", "v20.0")

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {
            'format': '%(asctime)s %(levelname)s %(name)s: %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple',
        },
    },
    'loggers': {
        'ledger': {
            'handlers': ['console'],
            'level': os.getenv("LEDGER_LOG_LEVEL", "INFO"),
            'propagate': False,
        },
    },
}
