"""
Unit tests for literal-aware SQL scanning helpers.
"""
from querygate.governance import sql_scan


def test_mask_keeps_length_and_blanks_literals():
    sql = "SELECT 'a;b' FROM t -- c;\nWHERE x = \"q;\""
    masked = sql_scan.mask(sql)
    assert len(masked) == len(sql)
    assert ";" not in masked
    assert masked.startswith("SELECT '   ' FROM t")


def test_mask_doubled_quote_escape():
    masked = sql_scan.mask("SELECT 'it''s; fine' FROM t")
    assert ";" not in masked
    assert masked.endswith("FROM t")


def test_mask_dollar_quoted_body():
    masked = sql_scan.mask("SELECT $$DROP; TABLE$$")
    assert "DROP" not in masked
    assert ";" not in masked


def test_split_statements_ignores_literal_semicolons():
    assert sql_scan.split_statements("SELECT ';'; SELECT 2") == ["SELECT ';'", "SELECT 2"]


def test_split_statements_drops_empty_parts():
    assert sql_scan.split_statements("SELECT 1;;  ;") == ["SELECT 1"]


def test_strip_comments():
    text = sql_scan.strip_comments("SELECT 1 /* hidden */ -- tail\n, '--kept'")
    assert "hidden" not in text
    assert "tail" not in text
    assert "'--kept'" in text


def test_first_keyword():
    assert sql_scan.first_keyword("  (select 1)") == "SELECT"
    assert sql_scan.first_keyword("/* note */ delete from t") == "DELETE"
    assert sql_scan.first_keyword("") == ""


def test_find_top_level_skips_subqueries():
    sql = "SELECT * FROM (SELECT a FROM t WHERE a > 1) s WHERE s.a < 5"
    pos = sql_scan.find_top_level(sql, ("WHERE",))
    assert sql[pos:].startswith("WHERE s.a")


def test_find_top_level_phrase():
    sql = "SELECT a, COUNT(*) FROM t GROUP BY a ORDER BY 2"
    assert sql[sql_scan.find_top_level(sql, ("GROUP", "BY")):].startswith("GROUP BY a")
    assert sql_scan.find_top_level(sql, ("HAVING",)) is None


def test_find_top_level_ignores_keywords_in_literals():
    sql = "SELECT 'GROUP BY' FROM t"
    assert sql_scan.find_top_level(sql, ("GROUP", "BY")) is None


def test_parentheses_balanced():
    assert sql_scan.parentheses_balanced("SELECT COUNT(*) FROM (SELECT 1) t")
    assert sql_scan.parentheses_balanced("SELECT ')' AS p")
    assert not sql_scan.parentheses_balanced("SELECT * FROM t) (")
    assert not sql_scan.parentheses_balanced("SELECT (1")


def test_unclosed():
    assert sql_scan.unclosed("SELECT 'abc")
    assert sql_scan.unclosed('SELECT "col')
    assert sql_scan.unclosed("SELECT 1 /* open")
    assert not sql_scan.unclosed("SELECT 1 /* closed */")
    assert not sql_scan.unclosed("SELECT 1 -- line comment")
    assert not sql_scan.unclosed("SELECT ''")


def test_table_references():
    sql = (
        "WITH r AS (SELECT * FROM refunds) "
        "SELECT * FROM public.orders o JOIN \"Customers\" c ON c.id = o.cid, r "
        "WHERE o.id IN (SELECT id FROM flagged)"
    )
    assert sql_scan.table_references(sql) == ["refunds", "public.orders", "Customers", "flagged"]
