import logging
import os

import google.auth
from dotenv import load_dotenv
from google.cloud import secretmanager

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.getenv("FLASK_SECRET_KEY", "dev-secret")

    # LOCAL mode uses SQLite
    LOCAL_DB = os.getenv("LOCAL_DB", "1") == "1"

    if os.getenv("DATABASE_URL"):
        SQLALCHEMY_DATABASE_URI = os.environ["DATABASE_URL"]
    elif LOCAL_DB:
        SQLALCHEMY_DATABASE_URI = "sqlite:///local.db"
    else:
        DB_USER = os.getenv("DB_USER", "")
        DB_PASS = os.getenv("DB_PASS", "")
        DB_NAME = os.getenv("DB_NAME", "")
        CLOUD_SQL_CONNECTION_NAME = os.getenv("CLOUD_SQL_CONNECTION_NAME", "")
        SQLALCHEMY_DATABASE_URI = (
            f"postgresql+psycopg2://{DB_USER}:{DB_PASS}@/"
            f"{DB_NAME}?host=/cloudsql/{CLOUD_SQL_CONNECTION_NAME}"
        )

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_DIR = os.getenv("LOG_DIR", "logs")
    LOG_TO_FILE = _flag("LOG_TO_FILE", "1")

    # Orders
    MAX_ACTIVE_ORDERS = int(os.getenv("MAX_ACTIVE_ORDERS", "5"))
    ESTIMATED_DELIVERY_MINUTES = int(os.getenv("ESTIMATED_DELIVERY_MINUTES", "45"))
    STRICT_STATUS_TRANSITIONS = _flag("STRICT_STATUS_TRANSITIONS", "1")
    PROMO_MAX_USES_PER_CUSTOMER = int(os.getenv("PROMO_MAX_USES_PER_CUSTOMER", "1"))

    # Pricing
    DELIVERY_FEE = float(os.getenv("DELIVERY_FEE", "2.00"))
    # "fixed" uses DELIVERY_FEE, "remote" asks the fee function (see get_secret)
    DELIVERY_FEE_MODE = os.getenv("DELIVERY_FEE_MODE", "fixed").strip().lower()
    DELIVERY_FEE_TIMEOUT = float(os.getenv("DELIVERY_FEE_TIMEOUT", "5"))
    PRICE_TOTAL_EPSILON = float(os.getenv("PRICE_TOTAL_EPSILON", "0.01"))

    # Audit mirror
    AUDIT_TO_FIRESTORE = _flag("AUDIT_TO_FIRESTORE", "0")

    # Listings
    DEFAULT_PAGE_LIMIT = int(os.getenv("DEFAULT_PAGE_LIMIT", "20"))
    MAX_PAGE_LIMIT = int(os.getenv("MAX_PAGE_LIMIT", "100"))


def get_secret(name: str) -> str | None:
    """
    Read a secret from Google Secret Manager.
    Falls back to environment variable for local development.
    """
    env_val = os.environ.get(name)
    if env_val:
        return env_val

    try:
        creds, project_id = google.auth.default()
        if not project_id:
            project_id = os.environ.get("GOOGLE_CLOUD_PROJECT")

        if not project_id:
            return None

        client = secretmanager.SecretManagerServiceClient(credentials=creds)
        secret_path = f"projects/{project_id}/secrets/{name}/versions/latest"
        resp = client.access_secret_version(request={"name": secret_path})
        return resp.payload.data.decode("utf-8").strip()

    except Exception:
        logging.getLogger(__name__).warning("Secret Manager read failed for %s", name, exc_info=True)
        return None
