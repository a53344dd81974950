"""Unit tests for WIQL text rewriting."""

from workitem_migrator.services import wiql

BASE = "SELECT [System.Id] FROM WorkItems WHERE [System.State] = 'Active'"


class TestOrderBy:
    def test_remove_order_by(self):
        assert wiql.remove_order_by(BASE + " ORDER BY [System.Id] DESC") == BASE

    def test_remove_order_by_case_insensitive(self):
        assert wiql.remove_order_by(BASE + "\norder by [System.Title]") == BASE

    def test_no_order_by(self):
        assert wiql.remove_order_by(BASE) == BASE

    def test_set_order_by(self):
        result = wiql.set_order_by(BASE + " ORDER BY [System.Title]", "System.Id")
        assert result == BASE + " ORDER BY System.Id"


class TestAddWhereConstraint:
    def test_wraps_existing_condition(self):
        result = wiql.add_where_constraint(BASE, "[System.Id] > 5")
        assert result == (
            "SELECT [System.Id] FROM WorkItems WHERE ([System.State] = 'Active') "
            "AND ([System.Id] > 5)"
        )

    def test_keeps_order_by(self):
        result = wiql.add_where_constraint(BASE + " ORDER BY [System.Id]", "X = 1")
        assert result.endswith("AND (X = 1) ORDER BY [System.Id]")

    def test_query_without_where(self):
        result = wiql.add_where_constraint("SELECT [System.Id] FROM WorkItems", "X = 1")
        assert result == "SELECT [System.Id] FROM WorkItems WHERE X = 1"

    def test_empty_clause(self):
        assert wiql.add_where_constraint(BASE, "") == BASE


class TestPaging:
    def test_exclude_tag_escapes_quotes(self):
        assert wiql.exclude_tag_clause("Bob's") == "System.Tags NOT CONTAINS 'Bob''s'"

    def test_base_query_with_tag(self):
        result = wiql.base_query(BASE + " ORDER BY [System.Id]", "Moved")
        assert "ORDER BY" not in result
        assert result.endswith("AND (System.Tags NOT CONTAINS 'Moved')")

    def test_base_query_without_tag(self):
        assert wiql.base_query(BASE) == BASE

    def test_page_query(self):
        result = wiql.page_query(BASE, 120, 7)
        assert (
            "((System.Watermark > 120) OR (System.Watermark = 120 AND System.Id > 7))"
            in result
        )
        assert result.endswith("ORDER BY System.Watermark, System.Id")
        assert result.count("ORDER BY") == 1
