"""
Browser-session registry and route-gating decorators for the Flask app.
"""

import threading
import uuid
from datetime import datetime, timedelta
from functools import wraps
from typing import Any, Dict, Iterable

from flask import abort, current_app, redirect, render_template, request, session

from clinicdesk.config import SESSION_IDLE_HOURS
from clinicdesk.pages import PAGES, PageController
from clinicdesk.rbac import FORBIDDEN, LOADING, LOGIN, ROLES, guard, load_user
from clinicdesk.session import SessionStore

# In-memory registry of browser sessions
# Structure: {sid: {"store": SessionStore, "client": BackendClient, "pages": {...}, ...}}
sessions: Dict[str, Dict[str, Any]] = {}
_sessions_lock = threading.Lock()


def _new_entry() -> Dict[str, Any]:
    store = SessionStore()
    client = current_app.config["CLIENT_FACTORY"](store.expire)
    entry = {
        "store": store,
        "client": client,
        "pages": {},
        "expired_notice": False,
        "created_at": datetime.utcnow(),
        "last_activity": datetime.utcnow(),
    }

    def on_expired():
        entry["pages"].clear()
        entry["expired_notice"] = True

    store.on_expired(on_expired)
    return entry


def current_entry() -> Dict[str, Any]:
    """Registry entry of the calling browser, created on first sight."""
    with _sessions_lock:
        sid = session.get("sid")
        entry = sessions.get(sid) if sid else None
        if entry is None:
            sid = uuid.uuid4().hex
            session["sid"] = sid
            entry = _new_entry()
            sessions[sid] = entry
    entry["last_activity"] = datetime.utcnow()
    return entry


def ensure_session(entry: Dict[str, Any]) -> None:
    client = entry["client"]
    entry["store"].init(lambda: load_user(client.who_am_i()), client.token_expiry)


def controller_for(entry: Dict[str, Any], slug: str) -> PageController:
    definition = PAGES[slug]
    pages = entry["pages"]
    with _sessions_lock:
        controller = pages.get(slug)
        if controller is None:
            controller = PageController(definition, entry["client"])
            pages[slug] = controller
    return controller


def gate(allowed_roles: Iterable[str]):
    """Return a response when the route must not render, else None."""
    entry = current_entry()
    ensure_session(entry)
    decision = guard(entry["store"], allowed_roles)
    if decision.outcome == LOADING:
        return render_template("loading.html", next_url=request.full_path), 200
    if decision.outcome in (LOGIN, FORBIDDEN):
        return redirect(decision.redirect_to)
    request.entry = entry
    return None


def role_required(*roles):
    """Decorator that renders the route only for the given roles."""
    allowed = set(roles) or set(ROLES)

    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            blocked = gate(allowed)
            if blocked is not None:
                return blocked
            return f(*args, **kwargs)
        return decorated
    return decorator


def page_required(f):
    """Like ``role_required`` with the roles of the ``slug`` page."""
    @wraps(f)
    def decorated(slug, *args, **kwargs):
        definition = PAGES.get(slug)
        if definition is None:
            abort(404)
        blocked = gate(definition.allowed_roles)
        if blocked is not None:
            return blocked
        request.controller = controller_for(request.entry, slug)
        return f(slug, *args, **kwargs)
    return decorated


def cleanup_expired_sessions():
    """Remove sessions that have been inactive beyond SESSION_IDLE_HOURS."""
    now = datetime.utcnow()
    with _sessions_lock:
        expired = [
            sid for sid, data in sessions.items()
            if now - data["last_activity"] > timedelta(hours=SESSION_IDLE_HOURS)
        ]
        for sid in expired:
            del sessions[sid]
    if expired:
        print(f"[cleanup] Removed {len(expired)} expired sessions")
    return len(expired)
