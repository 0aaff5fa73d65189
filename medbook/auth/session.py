"""Explicit session context handed out at sign-in."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from medbook.auth import jwt_handler
from medbook.core import config
from medbook.core.config import AuthPersistence


def token_lifetime_minutes(persistence: AuthPersistence) -> int:
    if persistence is AuthPersistence.DURABLE:
        return config.JWT_DURABLE_EXPIRES_MINUTES
    if persistence is AuthPersistence.TAB_SCOPED:
        return config.JWT_EXPIRES_MINUTES
    return config.JWT_EPHEMERAL_EXPIRES_MINUTES


@dataclass(frozen=True)
class SessionContext:
    access_token: str
    persistence: AuthPersistence
    expires_at: datetime

    @property
    def should_persist(self) -> bool:
        return self.persistence is not AuthPersistence.NONE

    @property
    def auto_refresh(self) -> bool:
        return self.persistence is not AuthPersistence.NONE

    @classmethod
    def open(cls, user_id: int, role: str, persistence: AuthPersistence | None = None) -> "SessionContext":
        persistence = persistence or config.AUTH_PERSISTENCE
        lifetime = token_lifetime_minutes(persistence)
        token = jwt_handler.create_access_token(
            subject=str(user_id),
            expires_minutes=lifetime,
            claims={"role": role, "persistence": persistence.value},
        )
        return cls(
            access_token=token,
            persistence=persistence,
            expires_at=datetime.now(timezone.utc) + timedelta(minutes=lifetime),
        )
