"""
Role-Based Access Control – loading the session user and gating routes.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from clinicdesk.config import LOGIN_ROUTE, NOT_AUTHORIZED_ROUTE
from clinicdesk.models import User
from clinicdesk.session import SessionStore

ADMIN = "admin"
PHARMACIST = "pharmacist"
RECEPTIONIST = "receptionist"
DOCTOR = "doctor"

ROLES = frozenset({ADMIN, PHARMACIST, RECEPTIONIST, DOCTOR})

_CLINICAL_MENU = [
    "opd", "laboratory", "bedroom", "operation", "ultrasound", "yeglizer", "perimetry",
]

# Menu entries (page slugs) shown per role.
ROLE_MENUS = {
    ADMIN: _CLINICAL_MENU + ["glasses", "expenses", "income"],
    RECEPTIONIST: _CLINICAL_MENU + ["glasses"],
    DOCTOR: list(_CLINICAL_MENU),
    PHARMACIST: [],
}

# Landing page after login.
ROLE_HOME = {
    ADMIN: "/opd",
    RECEPTIONIST: "/opd",
    DOCTOR: "/opd",
    PHARMACIST: NOT_AUTHORIZED_ROUTE,
}

ALLOW = "allow"
LOADING = "loading"
LOGIN = "login"
FORBIDDEN = "forbidden"


@dataclass
class GuardDecision:
    """Outcome of gating one route for the current session."""
    outcome: str
    redirect_to: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.outcome == ALLOW


def is_allowed(user_role: Optional[str], allowed_roles: Iterable[str]) -> bool:
    """Pure set-membership test; roles outside ROLES are always denied."""
    if user_role not in ROLES:
        return False
    return user_role in set(allowed_roles)


def load_user(payload: Any) -> User:
    """Parse the backend "who am I" body into a User."""
    if not isinstance(payload, dict):
        raise ValueError("Session endpoint returned no user.")

    data = payload
    if isinstance(data.get("data"), dict):
        data = data["data"]
    if isinstance(data.get("user"), dict):
        data = data["user"]

    role = str(data.get("role") or "").strip().lower()
    if not role:
        raise ValueError("Session user has no role.")
    if role not in ROLES:
        raise ValueError(f"Unsupported role '{data.get('role')}'.")

    user_id = data.get("_id") or data.get("id")
    if user_id is None:
        raise ValueError("Session user has no id.")

    first = (data.get("firstName") or "").strip()
    last = (data.get("lastName") or "").strip()
    name = data.get("name") or f"{first} {last}".strip() or data.get("email") or str(user_id)

    return User(id=str(user_id), role=role, name=name, email=data.get("email"), raw=dict(data))


def guard(store: SessionStore, allowed_roles: Iterable[str]) -> GuardDecision:
    """Decide how a protected route renders for this session."""
    if store.is_loading:
        return GuardDecision(LOADING)
    if not store.is_authenticated():
        return GuardDecision(LOGIN, LOGIN_ROUTE)
    if not is_allowed(store.role, allowed_roles):
        return GuardDecision(FORBIDDEN, NOT_AUTHORIZED_ROUTE)
    return GuardDecision(ALLOW)


def home_for(role: Optional[str]) -> str:
    return ROLE_HOME.get(role, NOT_AUTHORIZED_ROUTE)


def menu_for(role: Optional[str]) -> List[str]:
    return list(ROLE_MENUS.get(role, []))


def user_summary(user: Optional[User]) -> Dict[str, Any]:
    if user is None:
        return {}
    return {"id": user.id, "name": user.name, "role": user.role, "email": user.email}
