"""
Print views for one record or a batch of records of the same visit.
"""

from typing import Any, Dict, Iterable, List, Optional

from flask import render_template

from clinicdesk.models import FieldDescriptor, as_reference, display_name
from clinicdesk.table import format_value, short_date

PRINT_HEADER = "السید د سترګو روغتون"


def print_fields(fields: Iterable[FieldDescriptor]) -> List[FieldDescriptor]:
    """Fields shown on a printout (the doctor's percentage is internal)."""
    return [f for f in fields if f.name != "percentage"]


def _amount(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


class PrintView:
    """Read-only print layout; never touches table state."""

    def __init__(self, title: str, fields: Iterable[FieldDescriptor],
                 records: List[Dict[str, Any]], batch: bool = False):
        self.title = title
        self.fields = print_fields(fields)
        self.records = records
        self.batch = batch

    @classmethod
    def single(cls, title: str, fields, record: Dict[str, Any]) -> "PrintView":
        return cls(title, fields, [record])

    @classmethod
    def batch_of(cls, title: str, fields, records: List[Dict[str, Any]]) -> "PrintView":
        return cls(title, fields, list(records), batch=True)

    @property
    def record(self) -> Optional[Dict[str, Any]]:
        return self.records[0] if self.records else None

    def details(self) -> List[Dict[str, str]]:
        record = self.record or {}
        return [
            {"label": f.label, "value": format_value(f, record.get(f.name)).text}
            for f in self.fields
        ]

    def shared(self) -> Dict[str, str]:
        first = self.record or {}
        return {
            "patient": display_name(as_reference(first.get("patientName") or first.get("patientId"))),
            "doctor": display_name(as_reference(first.get("doctor"))),
            "date": short_date(first.get("date")) or "",
            "time": str(first.get("time") or ""),
        }

    def lines(self) -> List[Dict[str, str]]:
        lines = []
        for record in self.records:
            lines.append({
                "type": display_name(as_reference(record.get("type"))),
                "price": f"{_amount(record.get('price')):.2f}",
                "discount": f"{_amount(record.get('discount')):.2f}",
                "total": f"{_amount(record.get('totalAmount')):.2f}",
            })
        return lines

    def grand_total(self) -> str:
        return f"{sum(_amount(r.get('totalAmount')) for r in self.records):.2f}"

    def render(self, back_url: str) -> str:
        return render_template(
            "print.html", view=self, header=PRINT_HEADER, back_url=back_url,
        )
