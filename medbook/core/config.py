import os
from enum import Enum

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


class AuthPersistence(str, Enum):
    DURABLE = "durable"
    TAB_SCOPED = "tab_scoped"
    NONE = "none"


APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./medbook.db")
DATABASE_ECHO = _get_bool(os.getenv("DATABASE_ECHO"), default=False)

CORS_ORIGINS = _get_list(os.getenv("CORS_ORIGINS"), ["http://localhost:5173"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))
JWT_DURABLE_EXPIRES_MINUTES = int(os.getenv("JWT_DURABLE_EXPIRES_MINUTES", str(60 * 24 * 30)))
JWT_EPHEMERAL_EXPIRES_MINUTES = int(os.getenv("JWT_EPHEMERAL_EXPIRES_MINUTES", "15"))

AUTH_PERSISTENCE = AuthPersistence(os.getenv("AUTH_PERSISTENCE", AuthPersistence.DURABLE.value).strip().lower())

# Upper bound on how many days a recurring availability rule may span.
MAX_RULE_SPAN_DAYS = int(os.getenv("MAX_RULE_SPAN_DAYS", "366"))

DOCUMENTS_DIR = os.getenv("DOCUMENTS_DIR", "./storage/documents")
MAX_DOCUMENT_BYTES = int(os.getenv("MAX_DOCUMENT_BYTES", str(10 * 1024 * 1024)))


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if MAX_RULE_SPAN_DAYS < 1:
        raise RuntimeError("MAX_RULE_SPAN_DAYS must be a positive number of days.")
