"""
Generic data table – per-field display formatting and row actions.
"""

from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from flask import render_template

from clinicdesk.client import ApiError
from clinicdesk.config import DATE_DISPLAY_FORMAT, DEFAULT_BADGE, PLACEHOLDER, STATUS_BADGES
from clinicdesk.models import Cell, FieldDescriptor, as_reference, display_name, record_id

PERSON_FIELDS = {"patientId", "doctor"}
PERCENT_FIELDS = {"discount", "percentage"}
NAMED_FIELDS = {"type", "category"}


# ── Formatting ───────────────────────────────────────────────────────

def _is_empty(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _plain(value) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def short_date(value) -> Optional[str]:
    """Short human date for an ISO string / date; None if unparsable."""
    if isinstance(value, datetime):
        return value.strftime(DATE_DISPLAY_FORMAT)
    if isinstance(value, date):
        return value.strftime(DATE_DISPLAY_FORMAT)
    if not isinstance(value, str):
        return None
    text = value.strip()
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = datetime.strptime(text[:10], "%Y-%m-%d")
        except ValueError:
            return None
    return parsed.strftime(DATE_DISPLAY_FORMAT)


def _default_text(value) -> str:
    if isinstance(value, dict):
        return str(value.get("name") or PLACEHOLDER)
    if isinstance(value, (list, tuple)):
        return ", ".join(_default_text(v) for v in value) or PLACEHOLDER
    return _plain(value)


def format_value(field: FieldDescriptor, value: Any) -> Cell:
    """
    Display a record value. Rules run in a fixed order and the last one
    that matches wins.
    """
    if _is_empty(value):
        return Cell(PLACEHOLDER)

    name = field.name
    cell = Cell(_default_text(value))

    if field.type == "date" or name == "date":
        text = short_date(value)
        if text:
            cell = Cell(text)
    if name in PERSON_FIELDS and isinstance(value, dict):
        cell = Cell(display_name(as_reference(value)))
    if name in PERCENT_FIELDS:
        cell = Cell(f"{_plain(value)}%", badge="badge-percent")
    if name == "totalAmount":
        try:
            cell = Cell(f"{float(value):.2f}")
        except (TypeError, ValueError):
            pass
    if name == "status":
        cell = Cell(str(value), badge=STATUS_BADGES.get(str(value).lower(), DEFAULT_BADGE))
    if name in NAMED_FIELDS and isinstance(value, dict):
        cell = Cell(display_name(as_reference(value)))
    return cell


# ── Table ────────────────────────────────────────────────────────────

class DataTable:
    """Rows of records against a field list, with edit / delete / print actions."""

    empty_message = "No data submitted yet."

    def __init__(self, title: str, fields: Iterable[FieldDescriptor],
                 records: Optional[List[Dict[str, Any]]] = None):
        self.title = title
        self.fields = list(fields)
        self.records: List[Dict[str, Any]] = list(records or [])
        self.pending_remove: Optional[str] = None
        self.error: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.records

    def rows(self) -> List[Tuple[int, Dict[str, Any], List[Cell]]]:
        return [
            (index, record, [format_value(f, record.get(f.name)) for f in self.fields])
            for index, record in enumerate(self.records)
        ]

    def record_at(self, index) -> Optional[Dict[str, Any]]:
        try:
            index = int(index)
        except (TypeError, ValueError):
            return None
        if 0 <= index < len(self.records):
            return self.records[index]
        return None

    # ── Removal (always confirmed first) ─────────────────────────────

    def request_remove(self, index) -> Optional[Dict[str, Any]]:
        record = self.record_at(index)
        if record is None or record_id(record) is None:
            return None
        self.pending_remove = record_id(record)
        self.error = None
        return record

    def cancel_remove(self) -> None:
        self.pending_remove = None

    def confirm_remove(self, client, resource: str) -> bool:
        """Delete on the backend, then drop the row locally."""
        rid = self.pending_remove
        if rid is None:
            return False
        try:
            client.remove(resource, rid)
        except ApiError as e:
            if e.status == 401:
                raise
            self.error = e.message
            return False
        finally:
            self.pending_remove = None
        self.records = [r for r in self.records if record_id(r) != rid]
        return True

    def render(self, slug: str, can_edit: bool = True) -> str:
        return render_template(
            "components/data_table.html", table=self, slug=slug, can_edit=can_edit,
        )
