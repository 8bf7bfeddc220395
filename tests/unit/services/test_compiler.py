"""Unit tests for the QueryCompiler."""

from datetime import datetime, timezone

import pytest

from authstore.errors import QueryError
from authstore.models.enums import DateStorage, FieldType
from authstore.models.schema import FieldAttribute, ModelSchema
from authstore.services.compiler import QueryCompiler


def _make_user() -> ModelSchema:
    """Create a user model exercising each coerced type."""
    return ModelSchema(
        name="user",
        fields={
            "email": FieldAttribute(type=FieldType.STRING, required=True, unique=True),
            "age": FieldAttribute(type=FieldType.NUMBER),
            "emailVerified": FieldAttribute(type=FieldType.BOOLEAN, field_name="email_verified"),
            "createdAt": FieldAttribute(type=FieldType.DATE),
        },
    )


@pytest.fixture
def compiler() -> QueryCompiler:
    return QueryCompiler()


@pytest.fixture
def user() -> ModelSchema:
    return _make_user()


class TestCompileSelect:
    """Tests for SELECT compilation."""

    def test_single_equality_predicate(self, compiler: QueryCompiler, user: ModelSchema) -> None:
        statement = compiler.compile_select(user, [{"field": "email", "value": "a@x.com"}])

        assert statement.sql == (
            'SELECT "id", "email", "age", "email_verified" AS "emailVerified", "createdAt" '
            'FROM "user" WHERE "email" = ?'
        )
        assert statement.args == ("a@x.com",)

    def test_empty_filter_has_no_where_clause(self, compiler: QueryCompiler, user: ModelSchema) -> None:
        statement = compiler.compile_select(user, [])

        assert "WHERE" not in statement.sql
        assert statement.args == ()

    def test_connectors_chain_left_to_right(self, compiler: QueryCompiler, user: ModelSchema) -> None:
        statement = compiler.compile_select(
            user,
            [
                {"field": "email", "value": "a@x.com"},
                {"field": "age", "value": 30, "operator": "gt", "connector": "OR"},
                {"field": "emailVerified", "value": True},
            ],
        )

        assert statement.sql.endswith('WHERE "email" = ? OR "age" > ? AND "email_verified" = ?')
        assert statement.args == ("a@x.com", 30, 1)

    def test_in_operator_binds_each_value(self, compiler: QueryCompiler, user: ModelSchema) -> None:
        statement = compiler.compile_select(user, [{"field": "age", "value": [1, 2, 3], "operator": "in"}])

        assert statement.sql.endswith('WHERE "age" IN (?, ?, ?)')
        assert statement.args == (1, 2, 3)

    def test_null_equality_uses_is_null(self, compiler: QueryCompiler, user: ModelSchema) -> None:
        statement = compiler.compile_select(
            user,
            [{"field": "age", "value": None}, {"field": "email", "value": None, "operator": "ne"}],
        )

        assert statement.sql.endswith('WHERE "age" IS NULL AND "email" IS NOT NULL')
        assert statement.args == ()

    @pytest.mark.parametrize(
        ("operator", "pattern"),
        [("contains", "%a\\_b%"), ("starts_with", "a\\_b%"), ("endsWith", "%a\\_b")],
    )
    def test_pattern_operators_escape_wildcards(
        self, compiler: QueryCompiler, user: ModelSchema, operator: str, pattern: str
    ) -> None:
        statement = compiler.compile_select(user, [{"field": "email", "value": "a_b", "operator": operator}])

        assert statement.sql.endswith("WHERE \"email\" LIKE ? ESCAPE '\\'")
        assert statement.args == (pattern,)

    def test_dates_bind_in_storage_form(self, user: ModelSchema) -> None:
        compiler = QueryCompiler(date_storage=DateStorage.EPOCH)
        moment = datetime(1970, 1, 1, 0, 0, 2, tzinfo=timezone.utc)

        statement = compiler.compile_select(user, [{"field": "createdAt", "value": moment, "operator": "lt"}])

        assert statement.args == (2000,)

    def test_sort_and_window(self, compiler: QueryCompiler, user: ModelSchema) -> None:
        statement = compiler.compile_select(
            user,
            sort_by=[{"field": "age", "direction": "desc"}, {"field": "email"}],
            limit=10,
            offset=20,
        )

        assert statement.sql.endswith('ORDER BY "age" DESC, "email" ASC LIMIT ? OFFSET ?')
        assert statement.args == (10, 20)

    def test_offset_without_limit_uses_unbounded_limit(self, compiler: QueryCompiler, user: ModelSchema) -> None:
        statement = compiler.compile_select(user, offset=5)

        assert statement.sql.endswith(" LIMIT ? OFFSET ?")
        assert statement.args == (-1, 5)

    def test_projection_always_includes_id(self, compiler: QueryCompiler, user: ModelSchema) -> None:
        statement = compiler.compile_select(user, select=["email"])

        assert statement.sql == 'SELECT "id", "email" FROM "user"'

    def test_plural_table_names(self, user: ModelSchema) -> None:
        statement = QueryCompiler(use_plural=True).compile_select(user)

        assert statement.sql.endswith('FROM "users"')


class TestCompileErrors:
    """Tests for requests rejected before any SQL is produced."""

    def test_unknown_filter_field(self, compiler: QueryCompiler, user: ModelSchema) -> None:
        with pytest.raises(QueryError, match="nickname"):
            compiler.compile_select(user, [{"field": "nickname", "value": "x"}])

    def test_unknown_operator(self, compiler: QueryCompiler, user: ModelSchema) -> None:
        with pytest.raises(QueryError):
            compiler.compile_select(user, [{"field": "email", "value": "x", "operator": "regex"}])

    def test_unknown_sort_field(self, compiler: QueryCompiler, user: ModelSchema) -> None:
        with pytest.raises(QueryError):
            compiler.compile_select(user, sort_by={"field": "nickname"})

    def test_unknown_projection_field(self, compiler: QueryCompiler, user: ModelSchema) -> None:
        with pytest.raises(QueryError):
            compiler.compile_select(user, select=["nickname"])

    def test_negative_limit(self, compiler: QueryCompiler, user: ModelSchema) -> None:
        with pytest.raises(QueryError):
            compiler.compile_select(user, limit=-1)

    def test_unknown_data_field(self, compiler: QueryCompiler, user: ModelSchema) -> None:
        with pytest.raises(QueryError):
            compiler.compile_insert(user, {"id": "1", "nickname": "x"})

    def test_empty_update(self, compiler: QueryCompiler, user: ModelSchema) -> None:
        with pytest.raises(QueryError):
            compiler.compile_update(user, [], {})


class TestCompileWrites:
    """Tests for INSERT, UPDATE, DELETE and COUNT compilation."""

    def test_insert(self, compiler: QueryCompiler, user: ModelSchema) -> None:
        statement = compiler.compile_insert(user, {"id": "u1", "email": "a@x.com", "emailVerified": False})

        assert statement.sql == 'INSERT INTO "user" ("id", "email", "email_verified") VALUES (?, ?, ?)'
        assert statement.args == ("u1", "a@x.com", 0)

    def test_update_binds_values_before_filter(self, compiler: QueryCompiler, user: ModelSchema) -> None:
        statement = compiler.compile_update(user, [{"field": "email", "value": "a@x.com"}], {"age": 31})

        assert statement.sql == 'UPDATE "user" SET "age" = ? WHERE "email" = ?'
        assert statement.args == (31, "a@x.com")

    def test_update_can_clear_a_field(self, compiler: QueryCompiler, user: ModelSchema) -> None:
        statement = compiler.compile_update(user, [], {"age": None})

        assert statement.sql == 'UPDATE "user" SET "age" = ?'
        assert statement.args == (None,)

    def test_delete(self, compiler: QueryCompiler, user: ModelSchema) -> None:
        statement = compiler.compile_delete(user, [{"field": "age", "value": 18, "operator": "lt"}])

        assert statement.sql == 'DELETE FROM "user" WHERE "age" < ?'
        assert statement.args == (18,)

    def test_first_match_orders_by_rowid(self, compiler: QueryCompiler, user: ModelSchema) -> None:
        statement = compiler.compile_first_match(user, [{"field": "email", "value": "a@x.com"}])

        assert statement.sql == 'SELECT "id" FROM "user" WHERE "email" = ? ORDER BY rowid LIMIT 1'

    def test_count(self, compiler: QueryCompiler, user: ModelSchema) -> None:
        statement = compiler.compile_count(user, [{"field": "age", "value": 30, "operator": "gte"}])

        assert statement.sql == 'SELECT COUNT(*) AS "count" FROM "user" WHERE "age" >= ?'
        assert statement.args == (30,)

    def test_count_with_window_uses_subquery(self, compiler: QueryCompiler, user: ModelSchema) -> None:
        statement = compiler.compile_count(user, limit=5)

        assert statement.sql == 'SELECT COUNT(*) AS "count" FROM (SELECT 1 FROM "user" LIMIT ?)'
        assert statement.args == (5,)
