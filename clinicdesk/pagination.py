"""
Pagination control – page / limit bookkeeping for a list.

The control only reports which page to request; the owning page performs
the fetch and feeds the new totals back through ``update``.
"""

import math
from typing import Optional, Tuple

from flask import render_template

from clinicdesk.config import DEFAULT_PAGE_SIZE, PAGE_SIZE_CHOICES


def total_pages_for(total_items: int, limit: int) -> int:
    """ceil(total_items / limit), never below 1."""
    if limit <= 0:
        raise ValueError("limit must be positive")
    return max(1, math.ceil(max(total_items, 0) / limit))


class Pagination:
    """Current page, page size and totals for one list."""

    def __init__(self, current_page: int = 1, limit: int = DEFAULT_PAGE_SIZE,
                 total_pages: int = 1, total_items: int = 0):
        if limit <= 0:
            raise ValueError("limit must be positive")
        self.limit = limit
        self.total_pages = max(1, total_pages)
        self.total_items = max(0, total_items)
        self.current_page = self._clamp(current_page)

    def _clamp(self, page: int) -> int:
        return min(max(1, page), self.total_pages)

    def go_to(self, page) -> Optional[int]:
        """Move to ``page`` (clamped); return the page to request or None."""
        try:
            page = int(page)
        except (TypeError, ValueError):
            return None
        page = self._clamp(page)
        if page == self.current_page:
            return None
        self.current_page = page
        return page

    def next(self) -> Optional[int]:
        return self.go_to(self.current_page + 1)

    def previous(self) -> Optional[int]:
        return self.go_to(self.current_page - 1)

    def change_limit(self, limit) -> int:
        """New page size; the previous offset is meaningless, back to page 1."""
        limit = int(limit)
        if limit <= 0:
            raise ValueError("limit must be positive")
        self.limit = limit
        self.current_page = 1
        return self.current_page

    def update(self, total_pages: int, total_items: int) -> bool:
        """
        Take totals from a list response. Returns True when the current page
        fell out of range and was clamped (the owner should refetch).
        """
        self.total_pages = max(1, int(total_pages))
        self.total_items = max(0, int(total_items))
        clamped = self._clamp(self.current_page)
        changed = clamped != self.current_page
        self.current_page = clamped
        return changed

    def showing(self) -> Tuple[int, int]:
        """1-based (first, last) item numbers on the current page."""
        if self.total_items == 0:
            return 0, 0
        first = (self.current_page - 1) * self.limit + 1
        if self.current_page == self.total_pages:
            last = self.total_items
        else:
            last = min(self.current_page * self.limit, self.total_items)
        return min(first, last), last

    @property
    def has_previous(self) -> bool:
        return self.current_page > 1

    @property
    def has_next(self) -> bool:
        return self.current_page < self.total_pages

    @property
    def limit_choices(self):
        choices = list(PAGE_SIZE_CHOICES)
        if self.limit not in choices:
            choices.append(self.limit)
        return sorted(choices)

    def render(self, base_url: str, extra_params: Optional[dict] = None) -> str:
        return render_template(
            "components/pagination.html",
            pagination=self,
            base_url=base_url,
            extra_params=extra_params or {},
        )
