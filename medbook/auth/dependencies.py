from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from medbook.auth import jwt_handler
from medbook.auth.policy import Viewer, can_access
from medbook.database import SessionLocal
from medbook.models.user import User

security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _load_user(token: str, db: Session) -> User:
    try:
        payload = jwt_handler.decode_access_token(token)
    except Exception as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    subject = payload.get("sub")
    if not subject or not str(subject).isdigit():
        raise HTTPException(status_code=401, detail="Invalid token subject")

    user = db.query(User).filter(User.id == int(subject)).first()
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    if user.is_banned:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This account has been banned.")
    return user


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    return _load_user(credentials.credentials, db)


def get_viewer(
    credentials: HTTPAuthorizationCredentials | None = Depends(optional_security),
    db: Session = Depends(get_db),
) -> Viewer:
    if credentials is None:
        return Viewer.guest()
    return Viewer.for_user(_load_user(credentials.credentials, db))


def ensure_page_access(user: User, route: str) -> None:
    if not can_access(Viewer.for_user(user), route):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='You do not have access to this page.',
        )


def require_page(route: str):
    """Dependency that admits only users whose role may open ``route``."""

    def dependency(current_user: User = Depends(get_current_user)) -> User:
        ensure_page_access(current_user, route)
        return current_user

    return dependency
