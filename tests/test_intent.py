"""Tests for query intents and trivial-predicate detection."""

import pytest

from mssql_mcp.errors import MissingPredicate, OperationError
from mssql_mcp.intent import OperationKind, QueryIntent, is_trivial_predicate


@pytest.mark.parametrize(
    "predicate",
    [
        None,
        "",
        "   ",
        "1=1",
        "1 = 1",
        "(1=1)",
        "((1 = 1))",
        "'a'='a'",
        "N'x' = N'x'",
        "1",
        "true",
        "2 > 1",
        "0 < 1",
        "1 <> 0",
        "Id = Id",
        "Id = 5 OR 1 = 1",
        "1=1 or Id = 5",
        "NOT 1 = 0",
        "NOT Id = 3 OR 1 = 1",
        "(Id = 1) OR ('x' = 'x')",
        "1=1 AND 2=2",
        "'a' <> 'b'",
        "'abc' = 'ABC '",
        "NOT(1=0)",
        "1 IN (1)",
        "1 IN (3, 2, 1)",
        "'x' LIKE '%'",
        "Name LIKE '%'",
        "'abc' LIKE 'a_c'",
        "1 BETWEEN 0 AND 2",
        "Id IS NULL OR Id IS NOT NULL",
        "NOT (Id IS NULL) OR (Id IS NULL)",
        "2=2.0 OR Id = Id",
        "1 = '1'",
        "-1 < 0",
    ],
)
def test_trivial_predicates(predicate):
    assert is_trivial_predicate(predicate)


@pytest.mark.parametrize(
    "predicate",
    [
        "City = 'Redmond'",
        "Id = 5",
        "Id = 5 AND 1 = 1",
        "1 = 0",
        "1=1 AND Id = 2",
        "Color = 'or 1=1'",
        "Name = 'a' OR Name = 'b'",
        "NOT (Id = 3)",
        "Id <> Id",
        "Price > 10",
        "Name LIKE 'A%'",
        "'a' = 'b'",
        "1 IN (2, 3)",
        "Id IN (1, 2)",
        "1 BETWEEN 2 AND 3",
        "Id BETWEEN 0 AND 2",
        "Id IS NULL",
        "Id IS NULL OR Name IS NOT NULL",
        "NULL = NULL",
        "'abc' LIKE 'b%'",
        "Id = 1; DELETE FROM Customers",
    ],
)
def test_restrictive_predicates(predicate):
    assert not is_trivial_predicate(predicate)


class TestOperationKind:
    def test_predicate_kinds(self):
        assert OperationKind.READ.requires_predicate
        assert OperationKind.UPDATE.requires_predicate
        assert OperationKind.DELETE.requires_predicate
        assert not OperationKind.INSERT.requires_predicate
        assert not OperationKind.DDL.requires_predicate
        assert not OperationKind.CATALOG.requires_predicate

    def test_mutating_kinds(self):
        assert OperationKind.INSERT.is_mutating
        assert OperationKind.DDL.is_mutating
        assert not OperationKind.READ.is_mutating
        assert not OperationKind.CATALOG.is_mutating


class TestQueryIntent:
    def test_from_arguments_picks_predicate(self):
        intent = QueryIntent.from_arguments(
            OperationKind.DELETE, "where", {"table": "t", "where": "Id = 1"}
        )
        assert intent.predicate == "Id = 1"
        intent.check()

    def test_missing_predicate(self):
        intent = QueryIntent.from_arguments(OperationKind.READ, "filter", {"table": "t"})
        with pytest.raises(MissingPredicate, match="required"):
            intent.check()

    def test_trivial_predicate(self):
        intent = QueryIntent(OperationKind.UPDATE, "1=1")
        with pytest.raises(MissingPredicate, match="every row"):
            intent.check()

    def test_insert_needs_no_predicate(self):
        QueryIntent.from_arguments(OperationKind.INSERT, None, {"table": "t"}).check()

    def test_non_string_predicate(self):
        with pytest.raises(OperationError):
            QueryIntent.from_arguments(OperationKind.READ, "filter", {"filter": 1})
