"""
Searchable single-select with keyboard navigation.

States are ``closed`` and ``open``: opened by focus/click, closed again by a
selection, Escape, or a click outside the control.
"""

from typing import Any, Callable, Iterable, List, Optional

from flask import render_template

from clinicdesk.models import Option

CLOSED = "closed"
OPEN = "open"


def filter_options(options: Iterable[Option], term: str) -> List[Option]:
    """Case-insensitive substring match on the option label."""
    needle = (term or "").lower()
    return [o for o in options if needle in str(o.label).lower()]


class SelectInput:
    """State machine behind the searchable select."""

    def __init__(self, options: Iterable[Option], value: Any = "",
                 on_change: Optional[Callable[[Any], None]] = None,
                 name: str = "", placeholder: str = "Select an option"):
        self.options = list(options)
        self.value = value
        self.on_change = on_change
        self.name = name
        self.placeholder = placeholder
        self.state = CLOSED
        self.search_term = ""
        self.highlighted: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self.state == OPEN

    @property
    def filtered(self) -> List[Option]:
        return filter_options(self.options, self.search_term)

    @property
    def selected_option(self) -> Optional[Option]:
        for option in self.options:
            if str(option.value) == str(self.value):
                return option
        return None

    @property
    def display_label(self) -> str:
        selected = self.selected_option
        return str(selected.label) if selected else self.placeholder

    # ── Transitions ──────────────────────────────────────────────────

    def open(self) -> None:
        self.state = OPEN
        self.search_term = ""
        self.highlighted = None

    def close(self) -> None:
        self.state = CLOSED
        self.search_term = ""
        self.highlighted = None

    def toggle(self) -> None:
        if self.is_open:
            self.close()
        else:
            self.open()

    def click_outside(self) -> None:
        self.close()

    def type(self, term: str) -> None:
        if not self.is_open:
            self.open()
        self.search_term = term
        self.highlighted = None

    def choose(self, option: Option) -> None:
        self.value = option.value
        self.close()
        if self.on_change:
            self.on_change(option.value)

    def key(self, name: str) -> None:
        if not self.is_open:
            if name in ("Enter", "ArrowDown", "ArrowUp"):
                self.open()
            return

        filtered = self.filtered
        if name == "Escape":
            self.close()
        elif name == "Enter":
            if not filtered:
                return
            index = self.highlighted if self.highlighted is not None else 0
            self.choose(filtered[min(index, len(filtered) - 1)])
        elif name == "ArrowDown":
            if filtered:
                if self.highlighted is None:
                    self.highlighted = 0
                else:
                    self.highlighted = (self.highlighted + 1) % len(filtered)
        elif name == "ArrowUp":
            if filtered:
                if self.highlighted is None:
                    self.highlighted = len(filtered) - 1
                else:
                    self.highlighted = (self.highlighted - 1) % len(filtered)

    # ── Serialization for the server-driven widget ───────────────────

    def to_state(self) -> dict:
        return {
            "state": self.state,
            "search": self.search_term,
            "highlighted": self.highlighted,
            "value": self.value,
        }

    @classmethod
    def from_state(cls, options: Iterable[Option], state: dict, name: str = "") -> "SelectInput":
        select = cls(options, state.get("value", ""), name=name)
        if state.get("state") == OPEN:
            select.state = OPEN
            select.search_term = state.get("search") or ""
            highlighted = state.get("highlighted")
            if isinstance(highlighted, int) and 0 <= highlighted < len(select.filtered):
                select.highlighted = highlighted
        return select

    def render(self) -> str:
        return render_template("components/select.html", select=self)
