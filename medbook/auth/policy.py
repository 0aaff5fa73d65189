"""Route access policy: which viewers may open which page."""

from dataclasses import dataclass

from medbook.models.user import ROLE_ADMIN, ROLE_DOCTOR, ROLE_PATIENT, ROLES

GUEST = "GUEST"

EVERYONE = frozenset({GUEST, *ROLES})
GUESTS_ONLY = frozenset({GUEST})
PATIENTS = frozenset({ROLE_PATIENT})
DOCTORS = frozenset({ROLE_DOCTOR})
ADMINS = frozenset({ROLE_ADMIN})
SIGNED_IN = frozenset(ROLES)

ROUTE_POLICY: dict[str, frozenset[str]] = {
    "/": EVERYONE,
    "/doctors": EVERYONE,
    "/login": GUESTS_ONLY,
    "/register": GUESTS_ONLY,
    "/profile": SIGNED_IN,
    "/schedules": PATIENTS,
    "/appointments": PATIENTS,
    "/cart": PATIENTS,
    "/reviews": PATIENTS,
    "/my-schedule": DOCTORS,
    "/manage-schedule": DOCTORS,
    "/admin/users": ADMINS,
    "/admin/create-doctor": ADMINS,
}


@dataclass(frozen=True)
class Viewer:
    role: str
    is_authenticated: bool
    user_id: int | None = None

    @classmethod
    def guest(cls) -> "Viewer":
        return cls(role=GUEST, is_authenticated=False)

    @classmethod
    def for_user(cls, user) -> "Viewer":
        return cls(role=user.role, is_authenticated=True, user_id=user.id)


def can_access(viewer: Viewer, route: str) -> bool:
    allowed = ROUTE_POLICY.get(route)
    if allowed is None:
        raise KeyError(f"No access policy for route {route!r}")
    return viewer.role in allowed


def allowed_routes(viewer: Viewer) -> list[str]:
    return [route for route, roles in ROUTE_POLICY.items() if viewer.role in roles]
