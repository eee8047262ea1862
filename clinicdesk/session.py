"""
Auth session store – who is logged in, for one browser.

Lifecycle: ``init`` (once, from the backend "who am I" endpoint), ``set``
(after login), ``clear`` (logout) and ``expire`` (first 401 seen by the client).
"""

import sys
import threading
from datetime import datetime, timezone
from typing import Callable, List, Optional

from clinicdesk.models import User

LOADING = "loading"
AUTHENTICATED = "authenticated"
UNAUTHENTICATED = "unauthenticated"


class SessionStore:
    """Explicit, inspectable holder of the Auth Session."""

    def __init__(self):
        self.status = LOADING
        self.user: Optional[User] = None
        self.token_expiry: Optional[datetime] = None
        self._lock = threading.Lock()
        self._init_lock = threading.Lock()
        self._initialized = False
        self._expiring = False
        self._expiry_listeners: List[Callable[[], None]] = []

    # ── Lifecycle ────────────────────────────────────────────────────

    def init(self, fetch_user: Callable[[], User],
             fetch_expiry: Optional[Callable[[], Optional[datetime]]] = None) -> None:
        """Establish the session once; concurrent callers see ``loading``."""
        if self._initialized:
            return
        if not self._init_lock.acquire(blocking=False):
            return
        try:
            if self._initialized:
                return
            try:
                user = fetch_user()
                expiry = fetch_expiry() if fetch_expiry else None
            except Exception as e:
                print(f"[auth] No active session: {e}", file=sys.stderr)
                self.clear()
            else:
                self.set(user, expiry)
            self._initialized = True
        finally:
            self._init_lock.release()

    def set(self, user: User, token_expiry: Optional[datetime] = None) -> None:
        with self._lock:
            self.user = user
            self.token_expiry = token_expiry
            self.status = AUTHENTICATED
            self._initialized = True

    def clear(self) -> None:
        with self._lock:
            self.user = None
            self.token_expiry = None
            self.status = UNAUTHENTICATED

    def expire(self) -> bool:
        """
        Run the session-expired flow once.

        Returns True for the caller that ran it; concurrent and later calls
        (no session established any more) are no-ops and return False.
        """
        with self._lock:
            if self._expiring or self.user is None:
                return False
            self._expiring = True
            user = self.user
        try:
            print(f"[auth] Session expired for user {user.id}", file=sys.stderr)
            self.clear()
            for listener in list(self._expiry_listeners):
                listener()
        finally:
            with self._lock:
                self._expiring = False
        return True

    def on_expired(self, listener: Callable[[], None]) -> None:
        self._expiry_listeners.append(listener)

    # ── Queries ──────────────────────────────────────────────────────

    @property
    def is_loading(self) -> bool:
        return self.status == LOADING

    @property
    def role(self) -> Optional[str]:
        return self.user.role if self.user else None

    def is_token_valid(self, now: Optional[datetime] = None) -> bool:
        """True unless the backend token is known to be past its expiry."""
        if self.token_expiry is None:
            return True
        now = now or datetime.now(timezone.utc)
        return now < self.token_expiry

    def is_authenticated(self, now: Optional[datetime] = None) -> bool:
        return (
            self.status == AUTHENTICATED
            and self.user is not None
            and self.is_token_valid(now)
        )
