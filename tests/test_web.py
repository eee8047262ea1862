"""
Flask route tests – sessions, gating, list pages, forms and error mapping.
"""

import re

import pytest

from clinicdesk.client import ApiError, SessionExpired
from clinicdesk.models import ListPage
from clinicdesk.session import LOADING
from clinicdesk.web import auth
from clinicdesk.web.app import create_app


# ── Helpers / Fakes ──────────────────────────────────────────────────

USERS = {
    "admin@clinic.af": {"_id": "u1", "role": "admin", "name": "Admin"},
    "doc@clinic.af": {"_id": "u2", "role": "doctor", "name": "Dr. Noor"},
    "pharm@clinic.af": {"_id": "u3", "role": "pharmacist", "name": "Pharm"},
}

RECORDS = [
    {"_id": "r1", "patientId": {"_id": "p1", "name": "Ali Ahmadi"}, "time": "10:00",
     "date": "2024-03-05T00:00:00.000Z", "doctor": {"_id": "d1", "doctorName": "Dr. Noor"},
     "discount": 0, "price": 500, "percentage": 15, "totalAmount": 500},
    {"_id": "r2", "patientId": "P-200", "time": "11:00", "date": "2024-03-06",
     "doctor": "d1", "discount": 10, "price": 300, "percentage": 15, "totalAmount": 270},
]


class FakeBackend:
    """Stands in for BackendClient; one instance per browser session."""
    def __init__(self, on_unauthorized):
        self.on_unauthorized = on_unauthorized
        self.user = None
        self.expired = False
        self.list_error = None
        self.options_error = None
        self.summary_calls = []
        self.records = [dict(r) for r in RECORDS]
        self.requests = []
        self.removed = []

    def _check(self):
        if self.expired:
            triggered = self.on_unauthorized()
            raise SessionExpired("jwt expired", triggered)

    def who_am_i(self):
        if self.user is None:
            raise ApiError(401, "Not logged in")
        return {"data": {"user": self.user}}

    def token_expiry(self):
        return None

    def login(self, credentials):
        user = USERS.get(credentials["email"])
        if user is None or credentials["password"] != "secret":
            raise ApiError(401, "Incorrect email or password")
        self.user = user
        return {"data": {"user": user}}

    def logout(self):
        self.user = None

    def list_records(self, resource, page, limit, **kwargs):
        self._check()
        if self.list_error:
            raise self.list_error
        return ListPage(list(self.records), 1, len(self.records))

    def search_records(self, resource, term, limit, cancel_token=None):
        self._check()
        found = [r for r in self.records if term in str(r.get("patientId"))]
        return ListPage(found, 1, len(found))

    def get(self, path, params=None, cancel_token=None):
        self._check()
        self.summary_calls.append((path, params))
        return {"totalSalePrice": 9000, "length": 3, "totalStock": 40, "lowStockCount": 2}

    def fetch_collection(self, path, params=None):
        self._check()
        if self.options_error:
            raise self.options_error
        if path.endswith("-doctors"):
            return [{"doctorId": "d1", "doctorName": "Dr. Noor"}]
        return [{"_id": "t1", "name": "CBC", "price": 300}]

    def request(self, method, path, json=None, **kwargs):
        self._check()
        self.requests.append((method, path, json))
        return {"data": json}

    def create(self, resource, values):
        return self.request("POST", f"{resource}/", json=values)

    def remove(self, resource, record_id):
        self._check()
        self.removed.append((resource, record_id))


@pytest.fixture
def backends():
    return []


@pytest.fixture
def app(backends):
    auth.sessions.clear()

    def factory(on_unauthorized):
        backend = FakeBackend(on_unauthorized)
        backends.append(backend)
        return backend

    app = create_app(client_factory=factory, testing=True)
    yield app
    auth.sessions.clear()


@pytest.fixture
def client(app):
    return app.test_client()


def login(client, email="admin@clinic.af", password="secret"):
    return client.post("/login", data={"email": email, "password": password})


# ── Tests: health / auth ─────────────────────────────────────────────

def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "healthy"


def test_protected_page_redirects_to_login(client):
    resp = client.get("/opd")
    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/login")


def test_login_success_redirects_home(client):
    resp = login(client)
    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/opd")
    me = client.get("/me").get_json()
    assert me["user"]["role"] == "admin"


def test_login_failure_shows_backend_message(client):
    resp = login(client, password="wrong")
    assert resp.status_code == 401
    assert b"Incorrect email or password" in resp.data


def test_login_requires_both_fields(client):
    resp = client.post("/login", data={"email": "admin@clinic.af"})
    assert resp.status_code == 400


def test_logout_clears_session(client):
    login(client)
    client.post("/logout")
    resp = client.get("/opd")
    assert resp.headers["Location"].endswith("/login")


# ── Tests: gating ────────────────────────────────────────────────────

def test_pharmacist_has_no_pages(client):
    resp = login(client, "pharm@clinic.af")
    assert resp.headers["Location"].endswith("/not-authorized")
    resp = client.get("/opd")
    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/not-authorized")
    assert client.get("/not-authorized").status_code == 403


def test_doctor_cannot_open_admin_pages(client):
    login(client, "doc@clinic.af")
    assert client.get("/expenses").headers["Location"].endswith("/not-authorized")
    assert client.get("/opd").status_code == 200


def test_unknown_page_is_404(client):
    login(client)
    assert client.get("/nowhere").status_code == 404


# ── Tests: list page ─────────────────────────────────────────────────

def test_list_page_renders_formatted_rows(client):
    login(client)
    resp = client.get("/opd")
    assert resp.status_code == 200
    html = resp.data.decode()
    assert "Ali Ahmadi" in html
    assert "Mar 05, 2024" in html
    assert "15%" in html
    assert "270.00" in html


def test_backend_403_renders_access_denied(client, backends):
    login(client)
    backends[0].list_error = ApiError(403, "You do not have permission")
    resp = client.get("/opd")
    assert resp.status_code == 403
    assert b"You do not have permission" in resp.data


def test_expired_session_redirects_once_with_notice(client, backends):
    login(client)
    backends[0].expired = True
    resp = client.get("/opd")
    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/login")

    page = client.get("/login")
    assert b"Your session has expired" in page.data
    again = client.get("/login")
    assert b"Your session has expired" not in again.data


def test_live_search_returns_rows(client):
    login(client)
    client.get("/opd")
    resp = client.get("/opd/rows?q=P-200")
    assert resp.status_code == 200
    assert b"P-200" in resp.data
    assert b"Ali Ahmadi" not in resp.data


def test_export_csv(client):
    login(client)
    client.get("/opd")
    resp = client.get("/opd/export.csv")
    assert resp.status_code == 200
    assert resp.mimetype == "text/csv"
    lines = resp.data.decode().splitlines()
    assert lines[0].startswith("Patient,Time,Date,Doctor")
    assert len(lines) == 3


# ── Tests: forms ─────────────────────────────────────────────────────

def test_new_record_validation_then_success(client, backends):
    login(client)
    client.get("/opd")
    assert client.get("/opd/new").status_code == 200

    values = {"patientId": "", "time": "09:00", "date": "2024-03-07",
              "doctor": "d1", "discount": "0"}
    resp = client.post("/opd/new", data=values)
    assert b"Patient is required" in resp.data
    assert backends[0].requests == []

    resp = client.post("/opd/new", data=dict(values, patientId="P-300"))
    assert b"Record created successfully!" in resp.data
    assert backends[0].requests[0][:2] == ("POST", "opd/")


def test_edit_record_prefills_form(client):
    login(client)
    client.get("/opd")
    resp = client.get("/opd/r1/edit")
    assert resp.status_code == 200
    assert b'value="2024-03-05"' in resp.data
    assert client.get("/opd/missing/edit").status_code == 404


def form_token(resp):
    return re.search(r'name="form_token" value="([0-9a-f]+)"', resp.data.decode()).group(1)


def test_multi_record_form(client, backends):
    login(client)
    client.get("/laboratory")
    token = form_token(client.get("/laboratory/multi"))
    resp = client.post("/laboratory/multi", data={
        "form_token": token, "patientId": "P-1", "time": "09:00", "date": "2024-03-07",
        "doctor": "d1", "discount": "0", "types": ["t1"],
    })
    assert b"Created 1 record successfully!" in resp.data
    method, path, body = backends[0].requests[0]
    assert (method, path, body["type"]) == ("POST", "labratory/", "t1")
    assert client.get("/opd/multi").status_code == 404


def test_multi_record_form_repeated_post_is_ignored(client, backends):
    login(client)
    client.get("/laboratory")
    data = {
        "form_token": form_token(client.get("/laboratory/multi")), "patientId": "P-1",
        "time": "09:00", "date": "2024-03-07", "doctor": "d1", "discount": "0", "types": ["t1"],
    }
    client.post("/laboratory/multi", data=data)
    resp = client.post("/laboratory/multi", data=data)
    assert resp.status_code == 302
    assert len(backends[0].requests) == 1
    page = client.get("/laboratory")
    assert b"That form was already submitted or has expired." in page.data


# ── Tests: row actions ───────────────────────────────────────────────

def test_delete_requires_confirmation(client, backends):
    login(client)
    client.get("/opd")
    assert client.get("/opd/0/delete").status_code == 200
    client.post("/opd/0/delete", data={"confirm": "no"})
    assert backends[0].removed == []

    client.get("/opd/0/delete")
    resp = client.post("/opd/0/delete", data={"confirm": "yes"})
    assert resp.status_code == 302
    assert backends[0].removed == [("opd", "r1")]


def test_print_single_and_batch(client):
    login(client)
    client.get("/opd")
    single = client.get("/opd/1/print")
    assert single.status_code == 200
    assert b"270.00" in single.data
    assert client.get("/opd/9/print").status_code == 404

    batch = client.post("/opd/print", data={"selected": ["0", "1"]})
    assert b"770.00" in batch.data
    assert client.post("/opd/print", data={}).status_code == 302


# ── Tests: select widget ─────────────────────────────────────────────

def test_select_widget_round_trip(client):
    login(client)
    client.get("/opd")
    resp = client.post("/ui/select", json={
        "page": "opd", "field": "doctor", "state": {}, "event": {"type": "toggle"},
    })
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["state"]["state"] == "open"
    assert "Dr. Noor" in data["html"]

    resp = client.post("/ui/select", json={
        "page": "opd", "field": "doctor", "state": data["state"],
        "event": {"type": "key", "value": "Enter"},
    })
    assert resp.get_json()["state"] == {"state": "closed", "search": "", "highlighted": None,
                                        "value": "d1"}


def test_select_widget_rejects_unknown_field(client):
    login(client)
    resp = client.post("/ui/select", json={"page": "opd", "field": "price", "event": {}})
    assert resp.status_code == 404


# ── Tests: glasses ───────────────────────────────────────────────────

def test_glasses_page_shows_summary_and_stock(client, backends):
    login(client)
    resp = client.get("/glasses?category=frame")
    assert resp.status_code == 200
    html = resp.data.decode()
    assert "Total Available Value" in html
    assert "9000" in html
    assert "Out of stock" in html
    assert backends[0].summary_calls == [("glasses/summary", {"category": "frame"})]


def test_doctor_cannot_open_glasses(client):
    login(client, "doc@clinic.af")
    assert client.get("/glasses").headers["Location"].endswith("/not-authorized")


# ── Tests: loading and unexpected errors ─────────────────────────────

def test_page_shows_loading_while_session_check_runs(client):
    client.get("/login")
    entry = next(iter(auth.sessions.values()))
    store = entry["store"]
    store.status = LOADING
    store._initialized = False
    store._init_lock.acquire()
    try:
        resp = client.get("/opd")
    finally:
        store._init_lock.release()
    assert resp.status_code == 200
    assert "Checking your session" in resp.data.decode()
    assert b'url=/opd' in resp.data

    resp = client.get("/opd")
    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/login")


def test_unexpected_error_renders_500(client, backends, capsys):
    login(client)
    backends[0].options_error = RuntimeError("options exploded")
    resp = client.get("/opd")
    assert resp.status_code == 500
    assert b"Something went wrong" in resp.data
    assert "[ERROR] Unhandled error on /opd: options exploded" in capsys.readouterr().err
