"""Translate DuckDB result values into JSON.

Results are fetched from DuckDB as Arrow tables, so every cell arrives as a
typed `pyarrow.Scalar`. Mapping dispatches on that Arrow type rather than on the
Python value so that type-level decisions (128-bit integers and decimals as
strings, the time unit of a timestamp) are made the same way for every value of
a column.

Contract per engine type:

- null -> None
- boolean and integers up to 64 bits -> number
- HUGEINT (exported by DuckDB as decimal128(38, 0)) and DECIMAL -> exact base-10 string
- UHUGEINT (exported as the same signed decimal128) -> exact base-10 string, using the
  DuckDB column types that `with_engine_types` records in the schema metadata
- float/double -> number, or None when not finite
- text -> string; blob -> list of byte values
- timestamp -> ISO-8601 string at the precision of its unit
- date -> ISO calendar date; time -> ISO time at microsecond resolution (24:00:00 included)
- interval -> {"months", "days", "nanos"}
- enum -> its label
- list/array -> list; struct -> object; map -> object with stringified scalar keys
- union -> the active member's value

Anything else raises MappingError.
"""

from __future__ import annotations

import json
import math
from datetime import datetime, time, timedelta
from typing import Any, List

import pyarrow as pa

from .errors import MappingError

_EPOCH = datetime(1970, 1, 1)
_MICROS_PER_DAY = 86_400_000_000
_UINT128_RANGE = 2**128

ENGINE_TYPES_KEY = b"frogtable.engine_types"

_UNITS_PER_SECOND = {"s": 1, "ms": 1_000, "us": 1_000_000, "ns": 1_000_000_000}
_FRACTION_DIGITS = {"s": 0, "ms": 3, "us": 6, "ns": 9}


def arrow_value_to_json(scalar: pa.Scalar) -> Any:
    t = scalar.type
    if pa.types.is_null(t) or not scalar.is_valid:
        return None
    if pa.types.is_boolean(t):
        return bool(scalar.as_py())
    if pa.types.is_integer(t):
        return int(scalar.as_py())
    if pa.types.is_floating(t):
        f = float(scalar.as_py())
        return f if math.isfinite(f) else None
    if pa.types.is_decimal(t):
        return format(scalar.as_py(), "f")
    if _is_text(t):
        return str(scalar.as_py())
    if _is_binary(t):
        return list(scalar.as_py())
    if pa.types.is_timestamp(t):
        return _format_timestamp(scalar.value, t.unit, t.tz)
    if pa.types.is_date(t):
        try:
            return scalar.as_py().isoformat()
        except (ValueError, OverflowError) as exc:
            raise MappingError(f"Date value out of range: {exc}") from exc
    if pa.types.is_time(t):
        raw_type = pa.int64() if pa.types.is_time64(t) else pa.int32()
        return _format_time(scalar.cast(raw_type).as_py(), t.unit)
    if t == pa.month_day_nano_interval():
        v = scalar.as_py()
        return {"months": v.months, "days": v.days, "nanos": v.nanoseconds}
    if pa.types.is_dictionary(t):
        # DuckDB ENUM: the label lives in the dictionary
        return arrow_value_to_json(scalar.value)
    if pa.types.is_map(t):
        return _map_to_object(scalar)
    if _is_list(t):
        return [arrow_value_to_json(item) for item in scalar.values]
    if pa.types.is_struct(t):
        return {t.field(i).name: arrow_value_to_json(scalar[i]) for i in range(t.num_fields)}
    if pa.types.is_union(t):
        return arrow_value_to_json(scalar.value)
    raise MappingError(f"No JSON representation for values of type {t}")


def with_engine_types(table: pa.Table, engine_types: List[str]) -> pa.Table:
    """Record the DuckDB type name of every column in the schema metadata."""
    metadata = dict(table.schema.metadata or {})
    metadata[ENGINE_TYPES_KEY] = json.dumps(engine_types).encode("utf-8")
    return table.replace_schema_metadata(metadata)


def engine_types_of(table: pa.Table) -> List[str | None]:
    raw = (table.schema.metadata or {}).get(ENGINE_TYPES_KEY)
    names: List[str | None] = json.loads(raw) if raw else []
    return names + [None] * (table.num_columns - len(names))


def unsigned_wide_to_json(scalar: pa.Scalar) -> Any:
    """Map a UHUGEINT cell; values >= 2**127 arrive wrapped to negative decimals."""
    if not scalar.is_valid:
        return None
    if not pa.types.is_decimal(scalar.type):
        return arrow_value_to_json(scalar)
    value = int(scalar.as_py())
    if value < 0:
        value += _UINT128_RANGE
    return str(value)


def arrow_table_to_rows(table: pa.Table) -> List[List[Any]]:
    """Map every cell of `table`; a single unmappable value fails the whole conversion."""
    engine_types = engine_types_of(table)
    columns: List[List[Any]] = []
    for idx, column in enumerate(table.columns):
        to_json = unsigned_wide_to_json if engine_types[idx] == "UHUGEINT" else arrow_value_to_json
        try:
            columns.append([to_json(scalar) for scalar in column])
        except MappingError as exc:
            raise MappingError(f"Column {idx} ({table.schema.field(idx).name}): {exc}") from exc
    return [list(row) for row in zip(*columns)] if columns else [[] for _ in range(table.num_rows)]


def schema_to_json(schema: pa.Schema) -> dict:
    """Serialize a result schema; consumers read `fields[].name`."""
    return {
        "fields": [
            {"name": field.name, "data_type": str(field.type), "nullable": bool(field.nullable)}
            for field in schema
        ],
        "metadata": {},
    }


# --- helpers ---
def _is_text(t: pa.DataType) -> bool:
    return pa.types.is_string(t) or pa.types.is_large_string(t) or _check("is_string_view", t)


def _is_binary(t: pa.DataType) -> bool:
    return (
        pa.types.is_binary(t)
        or pa.types.is_large_binary(t)
        or pa.types.is_fixed_size_binary(t)
        or _check("is_binary_view", t)
    )


def _is_list(t: pa.DataType) -> bool:
    return (
        pa.types.is_list(t)
        or pa.types.is_large_list(t)
        or pa.types.is_fixed_size_list(t)
        or _check("is_list_view", t)
        or _check("is_large_list_view", t)
    )


def _check(predicate: str, t: pa.DataType) -> bool:
    # view types only exist in newer pyarrow releases
    fn = getattr(pa.types, predicate, None)
    return bool(fn(t)) if fn is not None else False


def _format_timestamp(value: int, unit: str, tz: str | None) -> str:
    per_second = _UNITS_PER_SECOND[unit]
    seconds, fraction = divmod(int(value), per_second)
    try:
        dt = _EPOCH + timedelta(seconds=seconds)
    except OverflowError as exc:
        raise MappingError(f"Timestamp {value} ({unit}) is outside the representable range") from exc
    text = dt.isoformat(timespec="seconds")
    digits = _FRACTION_DIGITS[unit]
    if digits:
        text += "." + str(fraction).zfill(digits)
    if tz:
        # Arrow stores zoned timestamps as UTC instants
        text += "+00:00"
    return text


def _format_time(value: int, unit: str) -> str:
    micros = int(value) * 1_000_000 // _UNITS_PER_SECOND[unit]
    if micros == _MICROS_PER_DAY:
        # end of day, as DuckDB allows
        return "24:00:00.000000"
    seconds, micro = divmod(micros, 1_000_000)
    minutes, second = divmod(seconds, 60)
    hour, minute = divmod(minutes, 60)
    try:
        return time(hour, minute, second, micro).isoformat(timespec="microseconds")
    except ValueError as exc:
        raise MappingError(f"Time value {value} ({unit}) is outside the representable range") from exc


def _map_key(key: Any) -> str:
    if isinstance(key, str):
        return key
    if key is None or isinstance(key, (bool, int, float)):
        return json.dumps(key)
    raise MappingError(f"Map key must be a scalar value, but got {key!r}")


def _map_to_object(scalar: pa.Scalar) -> dict:
    out: dict = {}
    entries = scalar.values
    if entries is None:
        return out
    # flatten() honours the slice offset of this entry; field() would not
    keys, items = entries.flatten()
    for k, v in zip(keys, items):
        out[_map_key(arrow_value_to_json(k))] = arrow_value_to_json(v)
    return out
