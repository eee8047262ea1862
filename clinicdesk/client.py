"""
REST client for the hospital backend.

Every call is credentialed through one ``requests.Session`` per browser (its
cookie jar carries the backend ``jwt`` cookie). Errors never escape as raw
``requests`` exceptions: callers get ``ApiError`` and its subclasses.
"""

import sys
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote

import jwt
import requests

from clinicdesk.config import (
    AUTH_COOKIE_NAME,
    AUTH_EXEMPT_ENDPOINTS,
    BASE_URL,
    GENERIC_ERROR_MESSAGE,
    LOGIN_ENDPOINT,
    LOGOUT_ENDPOINT,
    REQUEST_TIMEOUT_SECONDS,
    SESSION_ENDPOINT,
)
from clinicdesk.models import ListPage
from clinicdesk.pagination import total_pages_for


class ApiError(Exception):
    """A failed backend call (status 0 for network failures)."""

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


class SessionExpired(ApiError):
    """401 from a non-exempt endpoint; ``triggered`` is True for the first one."""

    def __init__(self, message: str, triggered: bool):
        super().__init__(401, message)
        self.triggered = triggered


class RequestCancelled(ApiError):
    def __init__(self):
        super().__init__(0, "Request cancelled")


class CancelToken:
    """Cancels a request before it is sent, or aborts it while in flight."""

    def __init__(self):
        self._cancelled = threading.Event()
        self._response = None
        self._lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()
        with self._lock:
            response = self._response
        if response is not None:
            response.close()

    def attach(self, response) -> None:
        with self._lock:
            self._response = response


def error_message(response) -> str:
    """Backend error text: JSON ``message``, else raw text, else a fallback."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    text = (response.text or "").strip()
    return text or GENERIC_ERROR_MESSAGE


def is_auth_exempt(path: str) -> bool:
    return any(endpoint in path for endpoint in AUTH_EXEMPT_ENDPOINTS)


def normalize_list(payload: Any, page: int, limit: int) -> ListPage:
    """
    Reduce the backend's mixed list conventions to one ListPage.

    ``totalPages`` wins when present; otherwise it is derived from the
    ``results`` count divided by ``limit``.
    """
    if not isinstance(payload, dict):
        payload = {"data": payload}
    data = payload.get("data")

    if isinstance(data, list):
        records, data = data, {}
    elif isinstance(data, dict):
        records = data.get("results")
        if not isinstance(records, list):
            records = data.get("records")
        if not isinstance(records, list):
            records = []
    else:
        records, data = [], {}

    total_pages = payload.get("totalPages") or data.get("totalPages")
    count = payload.get("results")
    if not isinstance(count, int):
        count = data.get("results")
    explicit_total = None
    for key in ("totalItems", "total", "totalDocuments"):
        value = payload.get(key, data.get(key))
        if isinstance(value, int):
            explicit_total = value
            break

    if not total_pages:
        total_items = explicit_total if explicit_total is not None else (
            count if isinstance(count, int) else len(records)
        )
        return ListPage(records, total_pages_for(total_items, limit), total_items)

    total_pages = max(1, int(total_pages))
    if explicit_total is not None:
        total_items = explicit_total
    elif page >= total_pages:
        total_items = (total_pages - 1) * limit + len(records)
    else:
        total_items = total_pages * limit
    return ListPage(records, total_pages, total_items)


class BackendClient:
    """Credentialed JSON client bound to one browser session."""

    def __init__(self, base_url: str = BASE_URL,
                 on_unauthorized: Optional[Callable[[], bool]] = None,
                 http=None, timeout: float = REQUEST_TIMEOUT_SECONDS):
        self.base_url = base_url.rstrip("/")
        self.on_unauthorized = on_unauthorized
        self.http = http if http is not None else requests.Session()
        self.http.headers.update({"Content-Type": "application/json"})
        self.timeout = timeout

    # ── Core request ─────────────────────────────────────────────────

    def request(self, method: str, path: str, json: Any = None,
                params: Optional[Dict[str, Any]] = None,
                cancel_token: Optional[CancelToken] = None) -> Any:
        if cancel_token is not None and cancel_token.cancelled:
            raise RequestCancelled()

        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self.http.request(
                method, url, json=json, params=params,
                timeout=self.timeout, stream=cancel_token is not None,
            )
        except requests.RequestException as e:
            if cancel_token is not None and cancel_token.cancelled:
                raise RequestCancelled()
            print(f"[api] {method} {path} failed: {e}", file=sys.stderr)
            raise ApiError(0, "Could not reach the server. Please try again.")

        if cancel_token is not None:
            cancel_token.attach(response)
            if cancel_token.cancelled:
                response.close()
                raise RequestCancelled()

        try:
            return self._handle(method, path, response)
        except requests.RequestException:
            if cancel_token is not None and cancel_token.cancelled:
                raise RequestCancelled()
            raise ApiError(0, "Connection lost while reading the response.")

    def _handle(self, method: str, path: str, response) -> Any:
        status = response.status_code
        if status == 401 and not is_auth_exempt(path):
            message = error_message(response)
            triggered = self.on_unauthorized() if self.on_unauthorized else False
            raise SessionExpired(message, triggered=bool(triggered))
        if not 200 <= status < 300:
            message = error_message(response)
            print(f"[api] {method} {path} -> {status}: {message}", file=sys.stderr)
            raise ApiError(status, message)
        if status == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    def get(self, path: str, params=None, cancel_token=None):
        return self.request("GET", path, params=params, cancel_token=cancel_token)

    def post(self, path: str, json=None):
        return self.request("POST", path, json=json)

    def patch(self, path: str, json=None):
        return self.request("PATCH", path, json=json)

    def delete(self, path: str):
        return self.request("DELETE", path)

    # ── Session ──────────────────────────────────────────────────────

    def who_am_i(self) -> Any:
        return self.get(SESSION_ENDPOINT)

    def login(self, credentials: Dict[str, Any]) -> Any:
        return self.post(LOGIN_ENDPOINT, json=credentials)

    def logout(self) -> None:
        try:
            self.post(LOGOUT_ENDPOINT)
        except ApiError as e:
            print(f"[WARN] Logout call failed: {e.message}", file=sys.stderr)
        self.http.cookies.clear()

    def token_expiry(self) -> Optional[datetime]:
        """Expiry of the backend jwt cookie, if one is present and readable."""
        token = self.http.cookies.get(AUTH_COOKIE_NAME)
        if not token:
            return None
        try:
            claims = jwt.decode(token, options={"verify_signature": False})
        except jwt.InvalidTokenError:
            return None
        exp = claims.get("exp")
        if exp is None:
            return None
        return datetime.fromtimestamp(int(exp), tz=timezone.utc)

    # ── Resources ────────────────────────────────────────────────────

    def list_records(self, resource: str, page: int, limit: int,
                     search_term: str = "", field_name: str = "",
                     category: str = "", extra: Optional[Dict[str, Any]] = None,
                     cancel_token: Optional[CancelToken] = None) -> ListPage:
        params: Dict[str, Any] = {"page": page, "limit": limit}
        if search_term and field_name:
            params["searchTerm"] = search_term
            params["fieldName"] = field_name
        if category:
            params["category"] = category
        if extra:
            params.update(extra)
        payload = self.get(resource, params=params, cancel_token=cancel_token)
        return normalize_list(payload, page, limit)

    def search_records(self, resource: str, term: str, limit: int,
                       cancel_token: Optional[CancelToken] = None) -> ListPage:
        """The search endpoint is unpaged: every hit comes back as one page."""
        path = f"{resource.rstrip('/')}/search/{quote(term, safe='')}"
        payload = self.get(path, cancel_token=cancel_token)
        records = normalize_list(payload, 1, limit).records
        return ListPage(records, 1, len(records))

    def create(self, resource: str, values: Dict[str, Any]) -> Any:
        return _unwrap(self.post(f"{resource.rstrip('/')}/", json=values))

    def update(self, resource: str, record_id: str, values: Dict[str, Any]) -> Any:
        return _unwrap(self.patch(f"{resource.rstrip('/')}/{record_id}", json=values))

    def remove(self, resource: str, record_id: str) -> None:
        self.delete(f"{resource.rstrip('/')}/{record_id}")

    def fetch_collection(self, path: str, params=None) -> list:
        """GET a helper collection (doctors, types) and return its items."""
        payload = self.get(path, params=params)
        data = payload.get("data") if isinstance(payload, dict) else payload
        if isinstance(data, dict):
            for key in ("results", "records", "data"):
                if isinstance(data.get(key), list):
                    return data[key]
            return []
        return data if isinstance(data, list) else []


def _unwrap(body: Any) -> Any:
    if isinstance(body, dict) and "data" in body and isinstance(body["data"], dict):
        return body["data"]
    return body
