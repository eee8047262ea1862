"""
CSV export of the records currently shown in a table.
"""

from typing import Any, Dict, Iterable, List

import pandas as pd

from clinicdesk.models import FieldDescriptor
from clinicdesk.table import format_value


def records_frame(fields: Iterable[FieldDescriptor], records: List[Dict[str, Any]]) -> pd.DataFrame:
    """One column per field label, cells formatted as the table shows them."""
    fields = list(fields)
    rows = [
        {f.label: format_value(f, record.get(f.name)).text for f in fields}
        for record in records
    ]
    return pd.DataFrame(rows, columns=[f.label for f in fields])


def to_csv(fields: Iterable[FieldDescriptor], records: List[Dict[str, Any]]) -> str:
    return records_frame(fields, records).to_csv(index=False)
