"""
Unit tests for the auth session store.
"""

import threading
from datetime import datetime, timedelta, timezone

from clinicdesk.models import User
from clinicdesk.session import AUTHENTICATED, LOADING, UNAUTHENTICATED, SessionStore


def make_user(role="admin"):
    return User(id="u1", role=role, name="Admin")


# ── Tests: init ──────────────────────────────────────────────────────

def test_new_store_is_loading():
    store = SessionStore()
    assert store.status == LOADING
    assert store.is_loading
    assert not store.is_authenticated()


def test_init_success_sets_user_and_expiry():
    expiry = datetime.now(timezone.utc) + timedelta(hours=1)
    store = SessionStore()
    store.init(lambda: make_user(), lambda: expiry)
    assert store.status == AUTHENTICATED
    assert store.role == "admin"
    assert store.token_expiry == expiry


def test_init_failure_clears(capsys):
    def fail():
        raise ValueError("no cookie")

    store = SessionStore()
    store.init(fail)
    assert store.status == UNAUTHENTICATED
    assert store.user is None
    assert "[auth] No active session" in capsys.readouterr().err


def test_init_runs_once():
    calls = []

    def fetch():
        calls.append(1)
        return make_user()

    store = SessionStore()
    store.init(fetch)
    store.clear()
    store.init(fetch)
    assert len(calls) == 1
    assert store.status == UNAUTHENTICATED


def test_concurrent_init_sees_loading():
    started = threading.Event()
    release = threading.Event()

    def slow_fetch():
        started.set()
        release.wait(5)
        return make_user()

    store = SessionStore()
    worker = threading.Thread(target=store.init, args=(slow_fetch,))
    worker.start()
    assert started.wait(5)

    store.init(lambda: make_user("doctor"))
    assert store.is_loading

    release.set()
    worker.join(5)
    assert store.role == "admin"


# ── Tests: token expiry ──────────────────────────────────────────────

def test_expired_token_is_not_authenticated():
    store = SessionStore()
    store.set(make_user(), datetime.now(timezone.utc) - timedelta(seconds=1))
    assert store.status == AUTHENTICATED
    assert not store.is_token_valid()
    assert not store.is_authenticated()


def test_unknown_expiry_counts_as_valid():
    store = SessionStore()
    store.set(make_user(), None)
    assert store.is_authenticated()


# ── Tests: expire ────────────────────────────────────────────────────

def test_expire_runs_listeners_once():
    fired = []
    store = SessionStore()
    store.set(make_user())
    store.on_expired(lambda: fired.append(1))

    assert store.expire() is True
    assert store.expire() is False
    assert fired == [1]
    assert store.status == UNAUTHENTICATED


def test_expire_without_session_is_noop():
    store = SessionStore()
    store.clear()
    assert store.expire() is False


def test_concurrent_expire_triggers_once():
    fired = []
    store = SessionStore()
    store.set(make_user())
    store.on_expired(lambda: fired.append(1))
    barrier = threading.Barrier(8)
    results = []

    def hit():
        barrier.wait(5)
        results.append(store.expire())

    threads = [threading.Thread(target=hit) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(5)

    assert results.count(True) == 1
    assert fired == [1]


def test_expire_logs_user_captured_under_lock(capsys):
    store = SessionStore()
    store.set(make_user())
    inner = store._lock

    class ClearOnRelease:
        """Lock whose first release lets a concurrent logout drop the user."""
        released = False

        def __enter__(self):
            return inner.__enter__()

        def __exit__(self, *exc):
            inner.__exit__(*exc)
            if not self.released:
                self.released = True
                store.user = None

    store._lock = ClearOnRelease()
    assert store.expire() is True
    assert "Session expired for user u1" in capsys.readouterr().err
