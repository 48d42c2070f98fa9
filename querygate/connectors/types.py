"""
Maps backend-native column types onto the normalised type set.
"""
from __future__ import annotations

from typing import Any

import pandas as pd
from sqlalchemy import types as sa_types

from querygate.catalog.schema import BOOLEAN, DATE, INTEGER, JSON, REAL, TEXT, TIMESTAMP


def from_type_name(type_name: str, scale: int | None = None) -> str:
    """Normalise a textual type name (Snowflake, BigQuery, DuckDB, SQLite declared types)."""
    name = (type_name or "").upper()
    if not name:
        return TEXT
    # Parameterised nested types: ARRAY<INT64> must not read as an integer
    if name.startswith(("STRUCT", "ARRAY", "RECORD", "MAP")):
        return JSON
    if name.startswith("INTERVAL"):
        return TEXT
    if "BOOL" in name:
        return BOOLEAN
    if "TIMESTAMP" in name or "DATETIME" in name:
        return TIMESTAMP
    if name.startswith("DATE"):
        return DATE
    if "INT" in name:
        return INTEGER
    if name.startswith(("NUMBER", "NUMERIC", "DECIMAL", "BIGNUMERIC", "BIGDECIMAL")):
        return INTEGER if scale == 0 else REAL
    if any(k in name for k in ("FLOAT", "DOUBLE", "REAL")):
        return REAL
    if any(k in name for k in ("JSON", "VARIANT", "OBJECT", "ARRAY", "STRUCT", "MAP", "LIST")):
        return JSON
    return TEXT


def from_sqlalchemy(type_obj: Any) -> str:
    """Normalise a type reported by ``sqlalchemy.inspect``."""
    if isinstance(type_obj, sa_types.Boolean):
        return BOOLEAN
    if isinstance(type_obj, sa_types.Integer):
        return INTEGER
    if isinstance(type_obj, (sa_types.Float, sa_types.Numeric)):
        return REAL
    if isinstance(type_obj, sa_types.DateTime):
        return TIMESTAMP
    if isinstance(type_obj, sa_types.Date):
        return DATE
    if isinstance(type_obj, sa_types.JSON):
        return JSON
    if isinstance(type_obj, (sa_types.String, sa_types.Enum)):
        return TEXT
    return from_type_name(str(type_obj))


_SALESFORCE_TYPES = {
    "int": INTEGER,
    "long": INTEGER,
    "double": REAL,
    "currency": REAL,
    "percent": REAL,
    "boolean": BOOLEAN,
    "date": DATE,
    "datetime": TIMESTAMP,
    "address": JSON,
    "location": JSON,
}


def from_salesforce(field_type: str) -> str:
    return _SALESFORCE_TYPES.get((field_type or "").lower(), TEXT)


def from_pandas_dtype(dtype: Any) -> str:
    if pd.api.types.is_bool_dtype(dtype):
        return BOOLEAN
    if pd.api.types.is_integer_dtype(dtype):
        return INTEGER
    if pd.api.types.is_float_dtype(dtype):
        return REAL
    if pd.api.types.is_datetime64_any_dtype(dtype):
        return TIMESTAMP
    return TEXT


def from_json_value(value: Any) -> str:
    # bool before int: True is an int in Python
    if isinstance(value, bool):
        return BOOLEAN
    if isinstance(value, int):
        return INTEGER
    if isinstance(value, float):
        return REAL
    if isinstance(value, (dict, list)):
        return JSON
    return TEXT


def infer_json_column(values: list[Any]) -> str:
    """Type of the first non-null sample value (TEXT when all are null)."""
    for value in values:
        if value is not None:
            return from_json_value(value)
    return TEXT
