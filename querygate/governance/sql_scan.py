"""
Literal-aware scanning of SQL text.

Keyword and delimiter checks must ignore whatever sits inside string
literals, quoted identifiers and comments.  ``mask`` returns a copy of the
text of identical length where those regions are blanked out, so positions
found in the masked text index straight back into the original.
"""
from __future__ import annotations

import re

_DOLLAR_TAG = re.compile(r"\$(\w*)\$")
_WORD = re.compile(r"[A-Za-z_][A-Za-z0-9_$]*")
COMMENT = "comment"
QUOTED = "quoted"


def regions(sql: str) -> list[tuple[int, int, str]]:
    """``(start, end, kind)`` spans of comments and quoted text.

    Quoted spans cover only the text between the quote characters; comment
    spans include their ``--`` / ``/* */`` markers.
    """
    spans: list[tuple[int, int, str]] = []
    i = 0
    n = len(sql)
    while i < n:
        ch = sql[i]
        nxt = sql[i + 1] if i + 1 < n else ""

        if ch == "-" and nxt == "-":
            end = sql.find("\n", i)
            end = n if end == -1 else end
            spans.append((i, end, COMMENT))
            i = end
            continue

        if ch == "/" and nxt == "*":
            end = sql.find("*/", i + 2)
            end = n if end == -1 else end + 2
            spans.append((i, end, COMMENT))
            i = end
            continue

        if ch in ("'", '"', "`"):
            j = i + 1
            while j < n:
                if sql[j] == ch:
                    if j + 1 < n and sql[j + 1] == ch:  # doubled quote escape
                        j += 2
                        continue
                    break
                if ch == "'" and sql[j] == "\\" and j + 1 < n:
                    j += 2
                    continue
                j += 1
            spans.append((i + 1, min(j, n), QUOTED))
            i = j + 1
            continue

        if ch == "$":
            m = _DOLLAR_TAG.match(sql, i)
            if m and not (i > 0 and (sql[i - 1].isalnum() or sql[i - 1] == "_")):
                tag = m.group(0)
                end = sql.find(tag, m.end())
                end = n if end == -1 else end
                spans.append((m.end(), end, QUOTED))
                i = end + len(tag)
                continue

        i += 1
    return spans


def mask(sql: str) -> str:
    """Blank out literals, quoted identifiers and comments.

    Quote characters of literals are kept so a masked ``'abc'`` still reads
    as a literal (``'   '``); comments become plain whitespace.
    """
    out = list(sql)
    for start, end, _kind in regions(sql):
        for k in range(start, end):
            if out[k] != "\n":
                out[k] = " "
    return "".join(out)


def split_statements(sql: str) -> list[str]:
    """Split on ``;`` delimiters that sit outside literals and comments."""
    masked = mask(sql)
    parts: list[str] = []
    start = 0
    for idx, ch in enumerate(masked):
        if ch == ";":
            parts.append(sql[start:idx])
            start = idx + 1
    parts.append(sql[start:])
    return [p.strip() for p in parts if mask(p).strip()]


def strip_comments(sql: str) -> str:
    """Remove comments, keeping literals intact."""
    out: list[str] = []
    last = 0
    for start, end, kind in regions(sql):
        if kind != COMMENT:
            continue
        out.append(sql[last:start])
        if sql.startswith("/*", start):
            out.append(" ")
        last = end
    out.append(sql[last:])
    return "".join(out)


def first_keyword(sql: str) -> str:
    """Upper-cased first bare word of the statement ('' if none)."""
    masked = mask(sql).lstrip(" \t\r\n(")
    m = _WORD.match(masked)
    return m.group(0).upper() if m else ""


def top_level_words(sql: str) -> list[tuple[int, str]]:
    """(position, UPPER word) pairs at parenthesis depth zero."""
    masked = mask(sql)
    words: list[tuple[int, str]] = []
    depth = 0
    i = 0
    n = len(masked)
    while i < n:
        ch = masked[i]
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth = max(0, depth - 1)
        elif ch in ("'", '"', "`"):
            close = masked.find(ch, i + 1)
            i = n if close == -1 else close + 1
            continue
        elif ch.isalpha() or ch == "_":
            m = _WORD.match(masked, i)
            if m:
                if depth == 0:
                    words.append((i, m.group(0).upper()))
                i = m.end()
                continue
        i += 1
    return words


def find_top_level(sql: str, phrase: tuple[str, ...]) -> int | None:
    """Position of the first top-level occurrence of a keyword sequence.

    ``phrase`` is a tuple such as ``("GROUP", "BY")``; words must be
    consecutive at depth zero.
    """
    words = top_level_words(sql)
    for idx in range(len(words) - len(phrase) + 1):
        if all(words[idx + k][1] == phrase[k] for k in range(len(phrase))):
            return words[idx][0]
    return None


def parentheses_balanced(sql: str) -> bool:
    """True when every ``)`` outside literals and comments closes an open ``(``."""
    depth = 0
    for ch in mask(sql):
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth < 0:
                return False
    return depth == 0


def unclosed(sql: str) -> bool:
    """True when a literal, quoted identifier or block comment runs off the end."""
    n = len(sql)
    for start, end, kind in regions(sql):
        if end < n:
            continue
        if kind == COMMENT:
            return sql.startswith("/*", start) and sql.find("*/", start + 2) == -1
        return True
    return False


# ── Table references ─────────────────────────────────────

# FROM inside these calls is an argument separator, not a source
_FROM_ARGUMENT_FUNCTIONS = frozenset({"EXTRACT", "SUBSTRING", "TRIM", "OVERLAY", "POSITION"})
# Keywords that close a FROM clause at the same depth
_FROM_CLAUSE_END = frozenset({
    "WHERE", "GROUP", "HAVING", "ORDER", "LIMIT", "OFFSET", "FETCH", "WINDOW",
    "QUALIFY", "UNION", "INTERSECT", "EXCEPT", "SELECT",
})
_IDENT_PART = r'(?:"[^"]*"|`[^`]*`|\[[^\]]*\]|[A-Za-z_][\w$]*)'
_TABLE_REF = re.compile(_IDENT_PART + r"(?:\s*\.\s*" + _IDENT_PART + r")*")
_CTE_NAME = re.compile(
    r"(?:\bWITH(?:\s+RECURSIVE)?|,)\s*([A-Za-z_][\w$]*)\s*(?:\([^()]*\)\s*)?AS\s*\(",
    re.IGNORECASE,
)


def _ref_after(text: str, pos: int) -> str | None:
    n = len(text)
    while pos < n and text[pos].isspace():
        pos += 1
    m = _TABLE_REF.match(text, pos)
    if m is None:
        return None  # derived table
    ref = ".".join(p.strip('"`[]') for p in re.split(r"\s*\.\s*", m.group(0)))
    after = m.end()
    while after < n and text[after].isspace():
        after += 1
    if after < n and text[after] == "(":
        return ref + "()"  # table function
    return ref


def table_references(sql: str) -> list[str]:
    """Sources named in FROM clauses at any depth, in order of appearance.

    Covers FROM, JOIN and comma-separated lists.  Quoted identifiers are
    unquoted, CTE names are left out, and table functions are reported as
    ``name()``.  Derived tables contribute their own inner references.
    """
    text = strip_comments(sql)
    masked = mask(text)
    ctes = {m.group(1).upper() for m in _CTE_NAME.finditer(masked)}

    refs: list[str] = []

    def _take(pos: int) -> None:
        ref = _ref_after(text, pos)
        if ref is not None and ref.upper() not in ctes:
            refs.append(ref)

    # one [calling word, inside FROM clause] pair per open parenthesis
    frames = [["", False]]
    prev = ""
    i = 0
    n = len(masked)
    while i < n:
        ch = masked[i]
        if ch == "(":
            frames.append([prev, False])
            prev = ""
        elif ch == ")":
            if len(frames) > 1:
                frames.pop()
            prev = ""
        elif ch == ",":
            if frames[-1][1]:
                _take(i + 1)
            prev = ""
        elif ch in ("'", '"', "`"):
            close = masked.find(ch, i + 1)
            i = n if close == -1 else close + 1
            prev = ""
            continue
        elif ch.isalpha() or ch == "_":
            m = _WORD.match(masked, i)
            if m:
                word = m.group(0).upper()
                frame = frames[-1]
                if word == "FROM" and frame[0] not in _FROM_ARGUMENT_FUNCTIONS and prev != "DISTINCT":
                    frame[1] = True
                    _take(m.end())
                elif word == "JOIN":
                    _take(m.end())
                elif word in _FROM_CLAUSE_END:
                    frame[1] = False
                prev = word
                i = m.end()
                continue
        elif not ch.isspace():
            prev = ""
        i += 1
    return refs
