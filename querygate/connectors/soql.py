"""
Translate the SQL-like subset accepted by the gateway into SOQL.

SOQL has no ``SELECT *``, no identifier quoting, no ``<>`` and no ``AS``
keyword for aliases.  Translation is textual and literal-aware: nothing
inside a string literal is touched.
"""
from __future__ import annotations

import re
from typing import Callable

from querygate.governance import sql_scan

_SELECT_STAR = re.compile(r"^\s*SELECT\s+(\*)\s+FROM\s+([A-Za-z_][\w]*)", re.IGNORECASE)
_AS_KEYWORD = re.compile(r"\bAS\s+(?=[A-Za-z_])", re.IGNORECASE)


def _strip_identifier_quotes(text: str) -> str:
    masked = sql_scan.mask(text)
    return "".join(
        ch for ch, m in zip(text, masked)
        if not (ch in ('"', "`") and m == ch)
    )


def _replace_outside_literals(text: str, pattern: re.Pattern, repl: str) -> str:
    masked = sql_scan.mask(text)
    out: list[str] = []
    last = 0
    for m in pattern.finditer(masked):
        out.append(text[last:m.start()])
        out.append(repl)
        last = m.end()
    out.append(text[last:])
    return "".join(out)


def to_soql(query_text: str, describe_fields: Callable[[str], list[str]]) -> str:
    """Return SOQL for *query_text*.

    ``describe_fields(object_name)`` supplies the field list used to expand
    ``SELECT *``.
    """
    text = query_text.strip()
    while text.endswith(";"):
        text = text[:-1].rstrip()

    text = _strip_identifier_quotes(text)
    text = _replace_outside_literals(text, re.compile(r"<>"), "!=")
    text = _replace_outside_literals(text, _AS_KEYWORD, "")

    star = _SELECT_STAR.match(sql_scan.mask(text))
    if star:
        fields = describe_fields(star.group(2))
        text = text[:star.start(1)] + ", ".join(fields) + text[star.end(1):]
    return text
