"""
Domain dataclasses used across the application.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from clinicdesk.config import PLACEHOLDER

FIELD_TYPES = {"text", "number", "date", "time", "select", "email", "textarea"}


@dataclass(frozen=True)
class Option:
    """One choice of a select field."""
    label: str
    value: Any


@dataclass(frozen=True)
class FieldDescriptor:
    """Describes one form input / table column."""
    name: str
    label: str
    type: str = "text"
    options: Tuple[Option, ...] = ()
    required: bool = True

    def __post_init__(self):
        if self.type not in FIELD_TYPES:
            raise ValueError(f"Unknown field type '{self.type}' for field '{self.name}'.")

    def with_options(self, options) -> "FieldDescriptor":
        return FieldDescriptor(self.name, self.label, self.type, tuple(options), self.required)


@dataclass
class User:
    """The logged-in user as reported by the backend."""
    id: str
    role: str
    name: str
    email: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PopulatedRef:
    """A reference the backend populated into a full object."""
    id: Optional[str]
    data: Dict[str, Any]


@dataclass(frozen=True)
class RawId:
    """A reference the backend left as a bare id."""
    id: str


Reference = Union[PopulatedRef, RawId]


@dataclass
class ListPage:
    """Normalized list response."""
    records: List[Dict[str, Any]]
    total_pages: int
    total_items: int


@dataclass(frozen=True)
class Cell:
    """A formatted table cell."""
    text: str
    badge: Optional[str] = None


def as_reference(value) -> Optional[Reference]:
    """Tag a record field value as a populated object or a raw id."""
    if value is None or value == "":
        return None
    if isinstance(value, dict):
        ref_id = value.get("_id") or value.get("id")
        return PopulatedRef(id=str(ref_id) if ref_id is not None else None, data=value)
    return RawId(id=str(value))


def display_name(ref: Optional[Reference]) -> str:
    """Human name for a reference; never raises."""
    if ref is None:
        return PLACEHOLDER
    if isinstance(ref, RawId):
        return ref.id
    data = ref.data
    if data.get("name"):
        return str(data["name"])
    first = (data.get("firstName") or "").strip()
    last = (data.get("lastName") or "").strip()
    if first or last:
        return f"{first} {last}".strip()
    if data.get("doctorName"):
        return str(data["doctorName"])
    return PLACEHOLDER


def reference_value(value):
    """Form value for a possibly-populated reference (its id)."""
    ref = as_reference(value)
    if ref is None:
        return ""
    if isinstance(ref, PopulatedRef):
        return ref.id or ""
    return ref.id


def record_id(record: Dict[str, Any]) -> Optional[str]:
    """Return the backend identity of a record."""
    rid = record.get("_id") or record.get("id")
    return str(rid) if rid is not None else None
