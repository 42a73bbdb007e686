"""
ROW NORMALIZER - Turn cursor records into JSON-ready dicts

Purpose:
    1. Map every record (keyed or positional) to {column name: value}
    2. Pick the column names once per result: cursor metadata when the
       warehouse reports it, otherwise the keys of the first record
    3. Convert warehouse values (timestamps, NUMERIC, BYTES, STRUCT, ARRAY)
       to plain JSON types so encoding is deterministic

Data Flow:
    Cursor → column_names() → to_row() per record → to_json_value() per cell
"""

import base64
import datetime
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from bqreport.core.errors import RowDecodingError
from bqreport.core.warehouse.executor import Cursor

JSONValue = Union[None, bool, int, float, str, List[Any], Dict[str, Any]]
Row = Dict[str, JSONValue]


@dataclass
class NormalizedRows:
    rows: List[Row] = field(default_factory=list)
    schema: List[str] = field(default_factory=list)


def to_json_value(value: Any) -> JSONValue:
    """
    Convert one warehouse cell to a JSON type.

    Examples:
        Decimal("12")                 → 12
        Decimal("1.5")                → 1.5
        datetime(2025, 1, 15, 10, 0)  → "2025-01-15T10:00:00"
        b"\\x00\\x01"                   → "AAE="
        {"a": Decimal("2")}           → {"a": 2}
    """
    # bool is an int subclass, keep it first
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return int(value)
        return float(value)
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, Mapping):
        return {str(k): to_json_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_value(v) for v in value]
    if hasattr(value, "items"):
        # google.cloud.bigquery.Row and other mapping-like records
        return {str(k): to_json_value(v) for k, v in value.items()}
    return str(value)


def _is_keyed(record: Any) -> bool:
    return isinstance(record, Mapping) or (
        hasattr(record, "keys") and hasattr(record, "items")
    )


def _record_keys(record: Any) -> List[str]:
    return [str(k) for k in record.keys()]


def to_row(record: Any, names: Optional[Sequence[str]]) -> Row:
    """
    Map one record to a row dict.

    With `names` (from metadata) the row carries exactly those columns, in
    that order, whatever keys the record physically has. Without `names`
    the record's own keys are used.
    """
    if _is_keyed(record):
        if names is None:
            return {str(k): to_json_value(v) for k, v in record.items()}
        return {name: to_json_value(record.get(name)) for name in names}

    if isinstance(record, Sequence) and not isinstance(record, (str, bytes)):
        if names is None:
            raise RowDecodingError(
                "row decode", "positional record without column metadata"
            )
        values = list(record)
        return {
            name: to_json_value(values[i] if i < len(values) else None)
            for i, name in enumerate(names)
        }

    raise RowDecodingError(
        "row decode", f"unsupported record type {type(record).__name__}"
    )


def normalize(cursor: Cursor) -> NormalizedRows:
    """
    Walk the cursor to exhaustion and return rows + schema.

    Column names come from cursor metadata when present. Otherwise they
    are the keys of the first record only; later records keep whatever
    keys they carry.

    Any cursor error aborts the walk, nothing partial is returned.
    """
    result = NormalizedRows()
    names: Optional[List[str]] = list(cursor.field_names) if cursor.field_names else None
    if names is not None:
        result.schema = list(names)

    for record in cursor:
        if names is None and not result.rows and _is_keyed(record):
            # infer column names from the first record
            result.schema = _record_keys(record)
        result.rows.append(to_row(record, names))

    return result
