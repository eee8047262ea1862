"""
Unit tests for table cell formatting and row removal.
"""

import pytest

from clinicdesk.client import ApiError, SessionExpired
from clinicdesk.models import FieldDescriptor
from clinicdesk.table import DataTable, format_value, short_date


# ── Helpers / Fakes ──────────────────────────────────────────────────

def f(name, type="text"):
    return FieldDescriptor(name, name.title(), type)


class FakeClient:
    def __init__(self, error=None):
        self.error = error
        self.removed = []

    def remove(self, resource, record_id):
        self.removed.append((resource, record_id))
        if self.error:
            raise self.error


# ── Tests: format_value ──────────────────────────────────────────────

def test_percentage_gets_badge():
    cell = format_value(f("percentage"), 15)
    assert cell.text == "15%"
    assert cell.badge == "badge-percent"


def test_discount_is_percent():
    assert format_value(f("discount", "number"), 5.0).text == "5%"


def test_total_amount_two_decimals():
    assert format_value(f("totalAmount", "number"), 19.5).text == "19.50"
    assert format_value(f("totalAmount", "number"), "abc").text == "abc"


def test_date_short_format():
    assert format_value(f("date", "date"), "2024-03-05T10:00:00.000Z").text == "Mar 05, 2024"
    assert short_date("2024-03-05") == "Mar 05, 2024"
    assert short_date("not a date") is None


def test_empty_values_use_placeholder():
    assert format_value(f("price"), None).text == "N/A"
    assert format_value(f("price"), "  ").text == "N/A"


def test_person_fields():
    doctor = {"_id": "d1", "doctorName": "Dr. Noor"}
    patient = {"_id": "p1", "firstName": "Ali", "lastName": "Ahmadi"}
    assert format_value(f("doctor", "select"), doctor).text == "Dr. Noor"
    assert format_value(f("patientId"), patient).text == "Ali Ahmadi"
    assert format_value(f("doctor", "select"), "d1").text == "d1"


def test_status_badges():
    assert format_value(f("status"), "Completed").badge == "badge-green"
    assert format_value(f("status"), "weird").badge == "badge-default"


def test_type_object_shows_name():
    assert format_value(f("type", "select"), {"_id": "t", "name": "CBC"}).text == "CBC"
    assert format_value(f("type", "select"), {"_id": "t"}).text == "N/A"


# ── Tests: DataTable ─────────────────────────────────────────────────

def make_table():
    return DataTable("OPD", [f("patientId"), f("price")], [
        {"_id": "a", "patientId": "P1", "price": 100},
        {"_id": "b", "patientId": "P2", "price": 200},
    ])


def test_rows_format_every_cell():
    rows = make_table().rows()
    assert rows[1][0] == 1
    assert [c.text for c in rows[1][2]] == ["P2", "200"]


def test_empty_table_message():
    table = DataTable("OPD", [f("price")])
    assert table.is_empty
    assert table.empty_message == "No data submitted yet."


def test_remove_deletes_backend_then_row():
    table, client = make_table(), FakeClient()
    assert table.request_remove(0)["_id"] == "a"
    assert table.confirm_remove(client, "opd") is True
    assert client.removed == [("opd", "a")]
    assert [r["_id"] for r in table.records] == ["b"]


def test_remove_failure_keeps_row():
    table, client = make_table(), FakeClient(ApiError(500, "Delete failed"))
    table.request_remove(1)
    assert table.confirm_remove(client, "opd") is False
    assert table.error == "Delete failed"
    assert len(table.records) == 2
    assert table.pending_remove is None


def test_remove_session_expired_propagates():
    table, client = make_table(), FakeClient(SessionExpired("expired", True))
    table.request_remove(0)
    with pytest.raises(SessionExpired):
        table.confirm_remove(client, "opd")


def test_remove_requires_confirmation_target():
    table, client = make_table(), FakeClient()
    assert table.request_remove(9) is None
    assert table.confirm_remove(client, "opd") is False
    table.request_remove(0)
    table.cancel_remove()
    assert table.confirm_remove(client, "opd") is False
    assert client.removed == []
