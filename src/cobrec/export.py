"""Write decoded records as JSON, JSONL or Arrow IPC."""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from pathlib import Path
from typing import Any

import orjson
import pyarrow as pa

from cobrec.copybook.record import Record


def _default(obj: object) -> object:
    # orjson handles str/int/dict/list natively; the rest needs a hint
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, (bytes, bytearray)):
        return bytes(obj).hex()
    if isinstance(obj, Record):
        return obj.to_dict()
    raise TypeError(f"{type(obj).__name__} is not JSON serializable")


def dumps(payload: Any, indent: bool = False) -> bytes:
    option = orjson.OPT_INDENT_2 if indent else 0
    return orjson.dumps(payload, option=option, default=_default)


def _rows(records: Iterable[Record | dict[str, Any]]) -> Iterable[dict[str, Any]]:
    for record in records:
        yield record.to_dict() if isinstance(record, Record) else record


def records_to_json(records: Iterable[Record | dict[str, Any]], path: Path) -> int:
    """Write records as one indented JSON array; return the record count."""
    path.parent.mkdir(parents=True, exist_ok=True)
    rows = list(_rows(records))
    path.write_bytes(dumps(rows, indent=True))
    return len(rows)


def records_to_jsonl(records: Iterable[Record | dict[str, Any]], path: Path) -> int:
    """Write one JSON object per line; return the record count."""
    path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with path.open("wb") as f:
        for row in _rows(records):
            f.write(dumps(row) + b"\n")
            count += 1
    return count


def _arrow_safe(value: object) -> object:
    # Decimal scales differ per field, keep them exact as text
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {key: _arrow_safe(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_arrow_safe(item) for item in value]
    return value


def records_to_table(records: Iterable[Record | dict[str, Any]]) -> pa.Table:
    return pa.Table.from_pylist([_arrow_safe(row) for row in _rows(records)])


def records_to_arrow(records: Iterable[Record | dict[str, Any]], path: Path) -> int:
    """Write records to an Arrow IPC file; nested groups become struct columns."""
    path.parent.mkdir(parents=True, exist_ok=True)
    table = records_to_table(records)
    with pa.OSFile(str(path), "wb") as sink:
        with pa.ipc.new_file(sink, table.schema) as writer:
            writer.write_table(table)
    return table.num_rows
