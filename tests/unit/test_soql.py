"""
Unit tests for SQL -> SOQL translation.
"""
from querygate.connectors.soql import to_soql


def _fields(obj):
    return {"Account": ["Id", "Name", "Industry"]}[obj]


def test_select_star_is_expanded():
    assert to_soql("SELECT * FROM Account", _fields) == "SELECT Id, Name, Industry FROM Account"


def test_quotes_and_terminator_removed():
    assert to_soql('SELECT "Name" FROM "Account";', _fields) == "SELECT Name FROM Account"


def test_not_equal_and_alias_keyword():
    soql = to_soql("SELECT COUNT(Id) AS total FROM Account WHERE Industry <> 'Tech'", _fields)
    assert soql == "SELECT COUNT(Id) total FROM Account WHERE Industry != 'Tech'"


def test_literals_are_untouched():
    soql = to_soql("SELECT Name FROM Account WHERE Name = 'A <> \"B\" AS C'", _fields)
    assert soql == "SELECT Name FROM Account WHERE Name = 'A <> \"B\" AS C'"
