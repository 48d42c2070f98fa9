"""
Deterministic safety checks for AI-generated query text (non-LLM).

These checks are the gate between an untrusted text generator and any
connector.  They operate purely on the text -- no schema, no LLM involved.

Contract with callers:
  1. ``sanitize`` strips markdown fences and surrounding prose
  2. ``validate`` rejects empty, multi-statement and non-read-only text
  3. only validated text may reach the row-level security wrapper

Checks performed by ``validate``:
  1. Text must not be empty after sanitisation
  2. Only one statement (``;`` outside literals/comments followed by more text)
  3. No write / DDL verb as the leading keyword or after a separator
  4. Balanced parentheses, no literal or block comment left open
  5. No data-modifying CTE body (``WITH x AS (DELETE ...)``)
  6. Statement must start with SELECT or WITH
"""
from __future__ import annotations

import re
from dataclasses import dataclass

from querygate.core.errors import UnsafeQueryError
from querygate.core.logging import get_logger
from querygate.governance import sql_scan

logger = get_logger(__name__)

# ── Vocabulary ───────────────────────────────────────────

WRITE_VERBS = frozenset({
    "INSERT", "UPDATE", "DELETE", "DROP", "ALTER", "TRUNCATE",
    "CREATE", "GRANT", "REVOKE", "MERGE",
})

_READ_STARTS = frozenset({"SELECT", "WITH"})

# Words that may open a line of a multi-line query; anything else after a
# blank line is treated as generator prose.
_SQL_LINE_STARTS = frozenset({
    "SELECT", "WITH", "FROM", "WHERE", "GROUP", "ORDER", "HAVING", "LIMIT",
    "OFFSET", "JOIN", "LEFT", "RIGHT", "INNER", "OUTER", "FULL", "CROSS",
    "UNION", "INTERSECT", "EXCEPT", "AND", "OR", "ON", "AS", "CASE", "WHEN",
    "THEN", "ELSE", "END", "WINDOW", "QUALIFY", "FETCH", "USING",
}) | WRITE_VERBS

# A language tag only counts as one when it is followed by a newline
_FENCE_OPEN = r"```(?:[ \t]*[\w+-]+[ \t]*\n|[ \t]*\n?)"
_FENCE_BLOCK = re.compile(_FENCE_OPEN + r"(.*?)```", re.DOTALL)
_OPEN_FENCE = re.compile(_FENCE_OPEN)
_LINE_START = re.compile(r"^[ \t]*(SELECT|WITH)\b", re.IGNORECASE | re.MULTILINE)
_ANY_START = re.compile(r"\b(SELECT|WITH)\b", re.IGNORECASE)
_CTE_BODY = re.compile(r"\bAS\s*\(\s*(\w+)", re.IGNORECASE)


@dataclass(frozen=True)
class SafetyVerdict:
    valid: bool
    error: str | None = None
    reason: str | None = None  # empty | multi_statement | destructive | malformed | not_read_only

    @classmethod
    def ok(cls) -> SafetyVerdict:
        return cls(valid=True)

    @classmethod
    def reject(cls, reason: str, error: str) -> SafetyVerdict:
        return cls(valid=False, error=error, reason=reason)


# ── Sanitisation ─────────────────────────────────────────

def _is_prose(paragraph: str) -> bool:
    head = paragraph.lstrip()
    if not head:
        return False
    if head[0] in "(),*;":
        return False
    word = re.match(r"[A-Za-z_]+", head)
    if word is None:
        return True
    return word.group(0).upper() not in _SQL_LINE_STARTS


def sanitize(text: str) -> str:
    """Extract the bare query from generator output.

    Takes the first fenced code block when present, drops explanatory prose
    before the first SELECT/WITH and prose paragraphs after the query, then
    trims a single trailing semicolon.
    """
    if not text:
        return ""
    body = text.strip()

    fenced = _FENCE_BLOCK.search(body)
    if fenced:
        body = fenced.group(1)
    else:
        # Unterminated fence: drop the opening marker and any stray backticks
        body = _OPEN_FENCE.sub("", body).replace("```", "")
    body = body.strip()

    start = _LINE_START.search(body)
    if start is None:
        start = _ANY_START.search(body)
    if start is not None:
        body = body[start.start():]

    paragraphs = re.split(r"\n[ \t]*\n", body)
    kept = [paragraphs[0]]
    for para in paragraphs[1:]:
        if _is_prose(para):
            break
        kept.append(para)
    body = "\n\n".join(kept).strip()

    if body.endswith(";") and len(sql_scan.split_statements(body)) <= 1:
        body = body[:-1].rstrip()
    return body


# ── Validation ───────────────────────────────────────────

def validate(text: str) -> SafetyVerdict:
    """Return the safety verdict for already-sanitised query text."""
    if not text or not sql_scan.strip_comments(text).strip():
        return SafetyVerdict.reject("empty", "Query is empty after sanitisation.")

    statements = sql_scan.split_statements(text)
    if not statements:
        return SafetyVerdict.reject("empty", "Query is empty after sanitisation.")

    for stmt in statements:
        verb = sql_scan.first_keyword(stmt)
        if verb in WRITE_VERBS:
            return SafetyVerdict.reject(
                "destructive", f"Write/DDL statement '{verb}' is not allowed."
            )

    if len(statements) > 1:
        return SafetyVerdict.reject(
            "multi_statement",
            "Multiple statements are not allowed (found ';' followed by another statement).",
        )

    stmt = statements[0]
    if sql_scan.unclosed(stmt):
        return SafetyVerdict.reject(
            "malformed", "Query has an unterminated string literal, identifier or comment."
        )
    if not sql_scan.parentheses_balanced(stmt):
        return SafetyVerdict.reject("malformed", "Query has unbalanced parentheses.")

    masked = sql_scan.mask(stmt)
    for m in _CTE_BODY.finditer(masked):
        if m.group(1).upper() in WRITE_VERBS:
            return SafetyVerdict.reject(
                "destructive",
                f"Data-modifying CTE using '{m.group(1).upper()}' is not allowed.",
            )

    verb = sql_scan.first_keyword(stmt)
    if verb not in _READ_STARTS:
        return SafetyVerdict.reject(
            "not_read_only",
            f"Only SELECT queries are allowed (statement starts with '{verb or stmt[:20]}').",
        )

    return SafetyVerdict.ok()


def check_query(raw_text: str) -> str:
    """Sanitise then validate; return the executable text or raise.

    Raises
    ------
    UnsafeQueryError
        Carrying the rejection reason and the sanitised text (display only).
    """
    cleaned = sanitize(raw_text)
    verdict = validate(cleaned)
    if not verdict.valid:
        logger.warning("Rejected generated query: reason=%s  error=%s", verdict.reason, verdict.error)
        raise UnsafeQueryError(verdict.error or "Unsafe query", reason=verdict.reason or "", query_text=cleaned)
    return cleaned
