"""
Schema-driven forms – validation, the create/edit form modal, and the
multi-record form used by the laboratory and bedroom pages.
"""

import math
import threading
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional

from flask import render_template

from clinicdesk.client import ApiError
from clinicdesk.config import FORM_CLOSE_DELAY_SECONDS
from clinicdesk.models import FieldDescriptor, reference_value
from clinicdesk.select import SelectInput

TEXT_TYPES = {"text", "textarea", "email"}
PRESENCE_TYPES = {"date", "time", "select"}


def _default_scheduler(delay: float, fn: Callable[[], None]) -> None:
    timer = threading.Timer(delay, fn)
    timer.daemon = True
    timer.start()


# ── Validation ───────────────────────────────────────────────────────

def empty_values(fields: Iterable[FieldDescriptor]) -> Dict[str, Any]:
    return {f.name: "" for f in fields}


def coerce_values(fields: Iterable[FieldDescriptor], values: Dict[str, Any]) -> Dict[str, Any]:
    """Request body: one key per field, numeric strings sent as numbers."""
    body = {}
    for field in fields:
        value = values.get(field.name, "")
        if field.type == "number" and isinstance(value, str) and value.strip():
            try:
                number = float(value)
            except ValueError:
                pass
            else:
                value = int(number) if number.is_integer() else number
        body[field.name] = value
    return body


def _is_blank(value) -> bool:
    return value is None or value == "" or (isinstance(value, str) and not value.strip())


def _invalid_number(value) -> bool:
    if value is None or value == "" or isinstance(value, bool):
        return True
    try:
        number = float(value)
    except (TypeError, ValueError):
        return True
    return math.isnan(number) or number < 0


def field_error(field: FieldDescriptor, value) -> Optional[str]:
    """Error message for one field, or None. Fields are checked independently."""
    if not field.required and _is_blank(value):
        return None

    message = f"{field.label} is required"
    if field.type in TEXT_TYPES:
        if not value or (isinstance(value, str) and not value.strip()):
            return message
    elif field.type == "number":
        if _invalid_number(value):
            return message
    elif field.type in PRESENCE_TYPES:
        if not value:
            return message
    return None


def validate(fields: Iterable[FieldDescriptor], values: Dict[str, Any]) -> Dict[str, str]:
    """Return {field name: message} for every failing field."""
    errors = {}
    for field in fields:
        error = field_error(field, values.get(field.name, ""))
        if error:
            errors[field.name] = error
    return errors


def edit_values(fields: Iterable[FieldDescriptor], record: Dict[str, Any]) -> Dict[str, Any]:
    """Pre-populate a value map from a backend record."""
    values = {}
    for field in fields:
        raw = record.get(field.name)
        if raw is None:
            values[field.name] = ""
        elif field.type == "select" or isinstance(raw, dict):
            values[field.name] = reference_value(raw)
        elif field.type == "date" and isinstance(raw, str):
            values[field.name] = raw[:10]
        else:
            values[field.name] = raw
    return values


# ── Form modal ───────────────────────────────────────────────────────

class FormModal:
    """
    Create/edit form for one page.

    ``submit`` validates, sends the whole value map as JSON (POST to create,
    PATCH to update) and on success resets, refreshes the owner and closes
    after a short delay so the success message stays visible.
    """

    def __init__(self, title: str, fields: Iterable[FieldDescriptor],
                 scheduler: Callable[[float, Callable[[], None]], None] = _default_scheduler,
                 close_delay: float = FORM_CLOSE_DELAY_SECONDS):
        self.title = title
        self.fields: List[FieldDescriptor] = list(fields)
        self.values = empty_values(self.fields)
        self.errors: Dict[str, str] = {}
        self.status: Optional[str] = None
        self.status_ok = False
        self.submitting = False
        self.is_open = False
        self.url_path: Optional[str] = None
        self.method = "POST"
        self.close_delay = close_delay
        self._scheduler = scheduler
        self._lock = threading.Lock()
        self._generation = 0

    # ── Open / close ─────────────────────────────────────────────────

    def _reset(self, values: Dict[str, Any]) -> None:
        self._generation += 1
        self.values = values
        self.errors = {}
        self.status = None
        self.status_ok = False

    def open_create(self, url_path: str) -> None:
        with self._lock:
            self._reset(empty_values(self.fields))
            self.url_path = url_path
            self.method = "POST"
            self.is_open = True

    def open_edit(self, record: Dict[str, Any], url_path: str) -> None:
        with self._lock:
            self._reset(edit_values(self.fields, record))
            self.url_path = url_path
            self.method = "PATCH"
            self.is_open = True

    def cancel(self) -> None:
        """Close and discard; an in-flight submission's result is dropped."""
        with self._lock:
            self._reset(empty_values(self.fields))
            self.is_open = False

    def _close_if(self, generation: int) -> None:
        with self._lock:
            if generation == self._generation:
                self.status = None
                self.is_open = False

    @property
    def is_edit(self) -> bool:
        return self.method == "PATCH"

    # ── Editing ──────────────────────────────────────────────────────

    def change(self, name: str, value) -> None:
        with self._lock:
            if name not in self.values:
                return
            self.values[name] = value
            self.errors.pop(name, None)

    def update(self, values: Dict[str, Any]) -> None:
        for field in self.fields:
            if field.name in values:
                self.change(field.name, values[field.name])

    # ── Submit ───────────────────────────────────────────────────────

    def submit(self, client, on_refresh: Optional[Callable[[], None]] = None) -> bool:
        """Validate and send. Returns True when the backend accepted the record."""
        with self._lock:
            if self.submitting or not self.is_open or not self.url_path:
                return False
            self.errors = validate(self.fields, self.values)
            if self.errors:
                self.status = None
                return False
            self.submitting = True
            generation = self._generation
            body = coerce_values(self.fields, self.values)
            method, url_path = self.method, self.url_path

        try:
            client.request(method, url_path, json=body)
        except ApiError as e:
            with self._lock:
                if generation == self._generation:
                    self.status = e.message or "An error occurred. Please try again."
                    self.status_ok = False
            if e.status == 401:
                raise
            return False
        finally:
            with self._lock:
                self.submitting = False

        with self._lock:
            if generation != self._generation:
                return False
            self.values = empty_values(self.fields)
            self.errors = {}
            self.status = f"Record {'updated' if method == 'PATCH' else 'created'} successfully!"
            self.status_ok = True

        if on_refresh:
            on_refresh()
        self._scheduler(self.close_delay, lambda: self._close_if(generation))
        return True

    # ── Rendering ────────────────────────────────────────────────────

    def select_for(self, field: FieldDescriptor) -> SelectInput:
        return SelectInput(list(field.options), self.values.get(field.name, ""), name=field.name)

    def render(self, action: str, cancel_url: str, page: str = "") -> str:
        return render_template(
            "components/form_modal.html",
            form=self, action=action, cancel_url=cancel_url, page=page,
        )


# ── Multi-record form ────────────────────────────────────────────────

class MultiRecordForm:
    """
    Shared fields plus a set of selected types; one record is created per type.

    A discount is only accepted for a single selected type: how the backend
    wants one discount split across several records is still undecided.

    Each created type leaves ``selected`` right away, so a retry after a
    partial failure only sends the types still missing. ``token`` changes on
    every successful submit; a POST carrying an older token repeats one that
    was already handled.
    """

    def __init__(self, title: str, fields: Iterable[FieldDescriptor],
                 types: Iterable[Dict[str, Any]], type_field: str = "type"):
        self.title = title
        self.type_field = type_field
        self.fields = [f for f in fields if f.name != type_field]
        self.types = list(types)
        self.submitting = False
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        self.values = empty_values(self.fields)
        self.selected: List[str] = []
        self.errors: Dict[str, str] = {}
        self.status: Optional[str] = None
        self.status_ok = False
        self.created = 0
        self.token = uuid.uuid4().hex

    def toggle_type(self, type_id: str, checked: bool) -> None:
        if checked and type_id not in self.selected:
            self.selected.append(type_id)
        elif not checked and type_id in self.selected:
            self.selected.remove(type_id)

    def update(self, values: Dict[str, Any], selected: Iterable[str],
               token: Optional[str] = None) -> bool:
        """Take posted values. False while a submit runs or for a stale token."""
        with self._lock:
            if self.submitting or (token is not None and token != self.token):
                return False
            for field in self.fields:
                self.values[field.name] = values.get(field.name, "")
            self.selected = []
            for type_id in selected:
                self.toggle_type(str(type_id), True)
            return True

    def _type(self, type_id: str) -> Optional[Dict[str, Any]]:
        for item in self.types:
            if str(item.get("_id")) == str(type_id):
                return item
        return None

    def _discount(self) -> float:
        try:
            return float(self.values.get("discount") or 0)
        except (TypeError, ValueError):
            return 0.0

    def summary(self) -> Dict[str, Any]:
        total = 0.0
        for type_id in self.selected:
            item = self._type(type_id) or {}
            try:
                total += float(item.get("price") or 0)
            except (TypeError, ValueError):
                pass
        discount = self._discount()
        return {
            "count": len(self.selected),
            "total": round(total, 2),
            "discount": round(discount, 2),
            "final": round(total - discount, 2),
        }

    def validate(self) -> Dict[str, str]:
        errors = validate(self.fields, self.values)
        if not self.selected:
            errors[self.type_field] = "Select at least one type"
        elif len(self.selected) > 1 and self._discount() > 0 and "discount" not in errors:
            errors["discount"] = (
                "A discount cannot be split across several records; "
                "add discounted records one at a time"
            )
        self.errors = errors
        return errors

    def submit(self, client, resource: str,
               on_refresh: Optional[Callable[[], None]] = None) -> bool:
        with self._lock:
            if self.submitting:
                return False
            self.status = None
            if self.validate():
                return False
            self.submitting = True
            pending = list(self.selected)
            body = coerce_values(self.fields, self.values)

        self.created = 0
        failed = None
        try:
            for type_id in pending:
                try:
                    client.create(resource, dict(body, **{self.type_field: type_id}))
                except ApiError as e:
                    if e.status == 401:
                        raise
                    failed = e.message
                    break
                self.created += 1
                with self._lock:
                    self.selected.remove(type_id)
        finally:
            with self._lock:
                self.submitting = False

        if self.created and on_refresh:
            on_refresh()

        if failed is not None:
            self.status = f"Created {self.created} of {len(pending)} records: {failed}"
            self.status_ok = False
            return False

        created = self.created
        self.reset()
        self.created = created
        self.status = f"Created {created} record{'s' if created != 1 else ''} successfully!"
        self.status_ok = True
        return True

    def render(self, action: str, cancel_url: str) -> str:
        return render_template(
            "components/multi_form.html",
            form=self, action=action, cancel_url=cancel_url, summary=self.summary(),
        )
