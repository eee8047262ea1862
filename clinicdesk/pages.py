"""
Domain pages – field lists and endpoints per department, and the controller
that wires the table, form, pagination and select components to the backend.
"""

import sys
import threading
import traceback
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from clinicdesk.client import ApiError, RequestCancelled, SessionExpired
from clinicdesk.config import GENERIC_ERROR_MESSAGE, SEARCH_DEBOUNCE_MS
from clinicdesk.forms import FormModal, MultiRecordForm
from clinicdesk.listing import Debouncer, SequencedLoader
from clinicdesk.models import FieldDescriptor, ListPage, Option, record_id
from clinicdesk.pagination import Pagination
from clinicdesk.printing import PrintView
from clinicdesk.rbac import ADMIN, DOCTOR, RECEPTIONIST
from clinicdesk.table import DataTable

CLINICAL_ROLES = frozenset({ADMIN, RECEPTIONIST, DOCTOR})
FINANCE_ROLES = frozenset({ADMIN})
STOCK_ROLES = frozenset({ADMIN, RECEPTIONIST})


@dataclass(frozen=True)
class OptionSource:
    """Backend collection that fills a select field."""
    field: str
    path: str
    label_key: str = "name"
    value_key: str = "_id"
    params: Tuple[Tuple[str, str], ...] = ()


@dataclass(frozen=True)
class PageDefinition:
    slug: str
    title: str
    resource: str
    fields: Tuple[FieldDescriptor, ...]
    table_fields: Tuple[FieldDescriptor, ...] = ()
    allowed_roles: frozenset = CLINICAL_ROLES
    option_sources: Tuple[OptionSource, ...] = ()
    searchable: bool = True
    search_placeholder: str = "Search by Patient ID..."
    date_filter: bool = False
    categories: Tuple[str, ...] = ()
    list_params: Tuple[Tuple[str, str], ...] = ()
    multi_type_field: Optional[str] = None
    summary_path: Optional[str] = None
    summary_cards: Tuple[Tuple[str, str], ...] = ()
    derived: Tuple[Tuple[str, Callable[[Dict[str, Any]], Any]], ...] = ()

    @property
    def all_fields(self) -> List[FieldDescriptor]:
        return list(self.fields) + list(self.table_fields)


def _text(name, label, required=True):
    return FieldDescriptor(name, label, "text", required=required)


def _number(name, label, required=True):
    return FieldDescriptor(name, label, "number", required=required)


def _select(name, label, options=()):
    return FieldDescriptor(name, label, "select", tuple(options))


PATIENT = _text("patientId", "Patient")
TIME = FieldDescriptor("time", "Time", "time")
DATE = FieldDescriptor("date", "Date", "date")
DOCTOR_FIELD = _select("doctor", "Doctor")
DISCOUNT = _number("discount", "Discount")
PRICE = _number("price", "Price")
PERCENTAGE = _text("percentage", "Percentage")
TOTAL = _number("totalAmount", "Total Amount")

INCOME_CATEGORIES = (
    "drug", "sunglasses", "glass", "frame", "oct", "opd", "laboratory",
    "bedroom", "ultrasound", "operation", "yeglizer",
)

GLASSES_CATEGORIES = ("sunglasses", "glass", "frame")


def stock_status(record: Dict[str, Any]) -> str:
    """Out of stock at zero, Low at or under the minimum level, else Available."""
    try:
        quantity = float(record.get("quantity") or 0)
        min_level = float(record.get("minLevel") or 0)
    except (TypeError, ValueError):
        return "Available"
    if quantity == 0:
        return "Out of stock"
    if quantity <= min_level:
        return "Low"
    return "Available"


# Summary cards: (label, key in the summary response).
GLASSES_SUMMARY = (
    ("Total Available Value", "totalSalePrice"),
    ("Total Items", "length"),
    ("Total Quantity", "totalStock"),
    ("Low Stock Items", "lowStockCount"),
)


def _doctors(resource: str, collection: str) -> OptionSource:
    return OptionSource("doctor", f"{resource}/{collection}", "doctorName", "doctorId")


def _types(field_name: str, kind: str) -> OptionSource:
    return OptionSource(field_name, "operation-types", "name", "_id",
                        (("type", kind), ("all", "true")))


PAGES: Dict[str, PageDefinition] = {p.slug: p for p in (
    PageDefinition(
        slug="bedroom", title="Bedroom", resource="bedroom",
        fields=(PATIENT, TIME, DATE, DOCTOR_FIELD, _select("type", "Type"), DISCOUNT),
        table_fields=(_number("rent", "Rent"), PERCENTAGE, TOTAL),
        option_sources=(_doctors("bedroom", "bedroom-doctors"), _types("type", "bedroom")),
        multi_type_field="type",
    ),
    PageDefinition(
        slug="laboratory", title="Laboratory", resource="labratory",
        fields=(PATIENT, _select("type", "Type"), TIME, DATE, DOCTOR_FIELD, DISCOUNT),
        table_fields=(PRICE, PERCENTAGE, TOTAL),
        option_sources=(_doctors("labratory", "labratory-doctors"), _types("type", "laboratory")),
        date_filter=True,
        multi_type_field="type",
    ),
    PageDefinition(
        slug="opd", title="OPD", resource="opd",
        fields=(PATIENT, TIME, DATE, DOCTOR_FIELD, DISCOUNT),
        table_fields=(PRICE, PERCENTAGE, TOTAL),
        option_sources=(_doctors("opd", "opd-doctors"),),
    ),
    PageDefinition(
        slug="operation", title="Operation", resource="operation",
        fields=(PATIENT, _select("operationType", "Type"), TIME, DATE, DOCTOR_FIELD, DISCOUNT),
        table_fields=(PRICE, _text("percentage", "Dr. Percentage"), TOTAL),
        option_sources=(_doctors("operation", "operation-doctors"),
                        _types("operationType", "operation")),
        date_filter=True,
    ),
    PageDefinition(
        slug="ultrasound", title="Ultrasound", resource="ultrasound",
        fields=(PATIENT, TIME, DATE, _select("type", "Type"), DISCOUNT),
        table_fields=(PRICE, TOTAL),
        option_sources=(_types("type", "biscayne"),),
        date_filter=True,
    ),
    PageDefinition(
        slug="yeglizer", title="Yeglizer", resource="yeglizer",
        fields=(PATIENT, TIME, DATE, DOCTOR_FIELD, DISCOUNT),
        table_fields=(PRICE, PERCENTAGE, TOTAL),
        option_sources=(_doctors("yeglizer", "yeglizer-doctors"),),
        list_params=(("serialToday", "true"),),
    ),
    PageDefinition(
        slug="perimetry", title="Perimetry", resource="perimetry",
        fields=(PATIENT, _select("perimetryType", "Type"), TIME, DATE, DOCTOR_FIELD, DISCOUNT),
        table_fields=(PRICE, _text("percentage", "Dr. Percentage"), TOTAL),
        option_sources=(_doctors("perimetry", "perimetry-doctors"),
                        _types("perimetryType", "perimetry")),
        list_params=(("serialToday", "true"),),
    ),
    PageDefinition(
        slug="expenses", title="Expenses", resource="expense",
        fields=(_number("amount", "Amount"), _text("reason", "Reason"), DATE,
                _text("category", "Category")),
        allowed_roles=FINANCE_ROLES,
        searchable=False,
        date_filter=True,
    ),
    PageDefinition(
        slug="income", title="Income", resource="income",
        fields=(
            DATE,
            _number("amount", "Amount"),
            _select("category", "Category", [Option(c, c) for c in INCOME_CATEGORIES]),
            FieldDescriptor("description", "Description", "textarea"),
            _select("paymentStatus", "Payment Status",
                    [Option("Paid", "Paid"), Option("Pending", "Pending")]),
        ),
        allowed_roles=FINANCE_ROLES,
        searchable=False,
        date_filter=True,
        categories=INCOME_CATEGORIES,
    ),
    PageDefinition(
        slug="glasses", title="Glasses", resource="glasses",
        fields=(
            _text("name", "Name"),
            _text("manufacturer", "Manufacturer"),
            _select("category", "Category", [Option(c, c) for c in GLASSES_CATEGORIES]),
            _number("minLevel", "Min-Level"),
            _number("quantity", "Quantity"),
            _number("purchasePrice", "Purchase Price"),
            _number("salePrice", "Sale Price", required=False),
        ),
        table_fields=(FieldDescriptor("createdAt", "Date", "date"),
                      FieldDescriptor("status", "Status")),
        allowed_roles=STOCK_ROLES,
        searchable=False,
        categories=GLASSES_CATEGORIES,
        summary_path="glasses/summary",
        summary_cards=GLASSES_SUMMARY,
        derived=(("status", stock_status),),
    ),
)}


class PageController:
    """List, filter, paginate and edit the records of one page for one browser."""

    def __init__(self, definition: PageDefinition, client,
                 debounce_ms: int = SEARCH_DEBOUNCE_MS,
                 timer_factory=threading.Timer, scheduler=None):
        self.definition = definition
        self.client = client
        self.pagination = Pagination()
        self.search_term = ""
        self.date = ""
        self.category = ""
        self.error: Optional[str] = None
        self.forbidden = False
        self.fields: List[FieldDescriptor] = list(definition.fields)
        self.types: List[Dict[str, Any]] = []
        self.options_loaded = False
        self.table = DataTable(definition.title, definition.all_fields)
        form_kwargs = {"scheduler": scheduler} if scheduler else {}
        self.form = FormModal(f"{definition.title} Record", self.fields, **form_kwargs)
        self.multi: Optional[MultiRecordForm] = None
        self.summary: Optional[List[Tuple[str, Any]]] = None
        self._loader = SequencedLoader()
        self._debouncer = Debouncer(debounce_ms, timer_factory)
        self._clamped = False

    @property
    def slug(self) -> str:
        return self.definition.slug

    # ── Fetching ─────────────────────────────────────────────────────

    def _fetch(self, cancel_token=None) -> ListPage:
        d = self.definition
        limit = self.pagination.limit
        if self.search_term and d.searchable:
            return self.client.search_records(d.resource, self.search_term, limit,
                                              cancel_token=cancel_token)
        search_term, field_name = (self.date, "date") if self.date else ("", "")
        return self.client.list_records(
            d.resource, self.pagination.current_page, limit,
            search_term=search_term, field_name=field_name,
            category=self.category, extra=dict(d.list_params),
            cancel_token=cancel_token,
        )

    def _derive(self, record):
        if not self.definition.derived or not isinstance(record, dict):
            return record
        record = dict(record)
        for name, compute in self.definition.derived:
            record[name] = compute(record)
        return record

    def _apply(self, page: ListPage) -> None:
        self.table.records = [self._derive(r) for r in page.records]
        self.error = None
        self.forbidden = False
        self._clamped = self.pagination.update(page.total_pages, page.total_items)

    def refresh(self, cancel_token=None) -> bool:
        """Fetch the current list; stale responses never overwrite newer ones."""
        try:
            applied = self._loader.load(lambda: self._fetch(cancel_token), self._apply)
        except (SessionExpired, RequestCancelled):
            raise
        except ApiError as e:
            self.table.records = []
            self.forbidden = e.status == 403
            self.error = e.message
            return False
        except Exception as e:
            print(f"[ERROR] Loading {self.slug} failed: {e}", file=sys.stderr)
            traceback.print_exc()
            self.table.records = []
            self.error = GENERIC_ERROR_MESSAGE
            return False

        if applied and self._clamped:
            self._clamped = False
            return self.refresh(cancel_token)
        return applied

    # ── Navigation / filters ─────────────────────────────────────────

    def go_to(self, page) -> Optional[int]:
        target = self.pagination.go_to(page)
        if target is not None:
            self.refresh()
        return target

    def change_limit(self, limit) -> None:
        self.pagination.change_limit(limit)
        self.refresh()

    def set_date(self, value: str) -> None:
        self.date = value or ""
        self.pagination.current_page = 1

    def set_category(self, value: str) -> None:
        self.category = value or ""
        self.pagination.current_page = 1

    def apply_query(self, args) -> None:
        """Translate list query parameters into state changes (no fetch)."""
        reset = False
        limit = args.get("limit")
        if limit:
            try:
                limit = int(limit)
            except ValueError:
                limit = None
            if limit and limit > 0 and limit != self.pagination.limit:
                self.pagination.change_limit(limit)
                reset = True
        if "date" in args and self.definition.date_filter and args.get("date", "") != self.date:
            self.set_date(args.get("date", ""))
            reset = True
        if "category" in args and self.definition.categories and args.get("category", "") != self.category:
            self.set_category(args.get("category", ""))
            reset = True
        if "q" in args and args.get("q", "").strip() != self.search_term:
            self.search_term = args.get("q", "").strip()
            self.pagination.current_page = 1
            reset = True
        page = args.get("page")
        if page and not reset:
            self.pagination.go_to(page)

    def search(self, term: str):
        """Debounced live search; returns the pending handle."""
        term = (term or "").strip()

        def run(token):
            self.search_term = term
            self.pagination.current_page = 1
            return self.refresh(cancel_token=token)

        return self._debouncer.call(run)

    # ── Select options ───────────────────────────────────────────────

    def load_options(self, force: bool = False) -> None:
        if self.options_loaded and not force:
            return
        fields = {f.name: f for f in self.definition.fields}
        for source in self.definition.option_sources:
            try:
                items = self.client.fetch_collection(source.path, params=dict(source.params))
            except SessionExpired:
                raise
            except ApiError as e:
                print(f"[WARN] Options for {self.slug}.{source.field}: {e.message}", file=sys.stderr)
                continue
            options = [
                Option(str(item.get(source.label_key) or ""), item.get(source.value_key))
                for item in items if isinstance(item, dict)
            ]
            fields[source.field] = fields[source.field].with_options(options)
            if source.field == self.definition.multi_type_field:
                self.types = [item for item in items if isinstance(item, dict)]
        self.fields = [fields[f.name] for f in self.definition.fields]
        self.form.fields = list(self.fields)
        self.options_loaded = True

    # ── Summary ──────────────────────────────────────────────────────

    def load_summary(self) -> None:
        """Fetch the page's summary cards for the current category filter."""
        d = self.definition
        if not d.summary_path:
            return
        params = {"category": self.category} if self.category else {}
        try:
            body = self.client.get(d.summary_path, params=params)
        except SessionExpired:
            raise
        except ApiError as e:
            print(f"[WARN] Summary for {self.slug}: {e.message}", file=sys.stderr)
            self.summary = None
            return
        if isinstance(body, dict) and isinstance(body.get("data"), dict):
            body = body["data"]
        body = body if isinstance(body, dict) else {}
        self.summary = [(label, body.get(key, 0)) for label, key in d.summary_cards]

    def field(self, name: str) -> Optional[FieldDescriptor]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    # ── Form ─────────────────────────────────────────────────────────

    def find_record(self, rid: str) -> Optional[Dict[str, Any]]:
        for record in self.table.records:
            if record_id(record) == rid:
                return record
        return None

    def open_create(self) -> None:
        self.form.open_create(f"{self.definition.resource}/")

    def open_edit(self, rid: str) -> bool:
        record = self.find_record(rid)
        if record is None:
            return False
        self.form.open_edit(record, f"{self.definition.resource}/{rid}")
        return True

    def submit_form(self, values: Dict[str, Any]) -> bool:
        self.form.update(values)
        return self.form.submit(self.client, on_refresh=self.refresh)

    def multi_form(self, fresh: bool = False) -> MultiRecordForm:
        """The page's multi-record form; kept between requests unless *fresh*."""
        if self.multi is None or (fresh and not self.multi.submitting):
            self.multi = MultiRecordForm(
                f"Add Multiple {self.definition.title} Records", self.fields,
                self.types, type_field=self.definition.multi_type_field or "type",
            )
        return self.multi

    # ── Row actions ──────────────────────────────────────────────────

    def request_remove(self, index):
        return self.table.request_remove(index)

    def confirm_remove(self) -> bool:
        return self.table.confirm_remove(self.client, self.definition.resource)

    def print_record(self, index) -> Optional[PrintView]:
        record = self.table.record_at(index)
        if record is None:
            return None
        return PrintView.single(self.definition.title, self.definition.all_fields, record)

    def print_batch(self, indices) -> Optional[PrintView]:
        records = [r for r in (self.table.record_at(i) for i in indices) if r is not None]
        if not records:
            return None
        return PrintView.batch_of(self.definition.title, self.definition.all_fields, records)
