import os
from dotenv import load_dotenv, find_dotenv

load_dotenv(find_dotenv())


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# MongoDB
MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
DB_NAME = os.getenv("DB_NAME", "whatsapp_crm")

# JWT (tokens are issued by the identity service; we only verify them)
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24))

# Messaging provider, chosen once at startup: "evolution" or "cloud"
MESSAGING_PROVIDER = os.getenv("MESSAGING_PROVIDER", "evolution").lower()
PROVIDER_TIMEOUT_SECONDS = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", 10))

EVOLUTION_API_URL = os.getenv("EVOLUTION_API_URL", "http://evolution-api:8080")
EVOLUTION_API_KEY = os.getenv("EVOLUTION_API_KEY", "")

WHATSAPP_TOKEN = os.getenv("WHATSAPP_TOKEN")
WHATSAPP_API_VERSION = os.getenv("WHATSAPP_API_VERSION", "v19.0")
WHATSAPP_API_URL = os.getenv("WHATSAPP_API_URL", f"https://graph.facebook.com/{WHATSAPP_API_VERSION}")

# Outbound dispatch queue
DISPATCH_WORKER_ENABLED = _env_bool("DISPATCH_WORKER_ENABLED", True)
DISPATCH_MAX_ATTEMPTS = int(os.getenv("DISPATCH_MAX_ATTEMPTS", 3))
DISPATCH_BACKOFF_SECONDS = float(os.getenv("DISPATCH_BACKOFF_SECONDS", 2.0))
DISPATCH_CONCURRENCY = int(os.getenv("DISPATCH_CONCURRENCY", 2))
DISPATCH_POLL_INTERVAL_SECONDS = float(os.getenv("DISPATCH_POLL_INTERVAL_SECONDS", 1.0))
DISPATCH_STALLED_AFTER_SECONDS = float(os.getenv("DISPATCH_STALLED_AFTER_SECONDS", 60))
