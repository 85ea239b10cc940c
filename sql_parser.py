# sql_parser.py
"""
best-effort mapping of raw sql text onto table-level operations.

used when the connected backend cannot run sql itself: a statement is either
recognized as one of a handful of simple shapes (single-table select, insert
with literal values, update/delete with one `col = value` condition) or it is
reported back as unparseable. there is no partial execution.

nothing in here talks to the backend.
"""
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

DEFAULT_SELECT_LIMIT = 100

DDL_KEYWORDS = ("create", "alter", "drop")

DIALECT = "postgres"

SETUP_SQL_TEMPLATE = """
-- run this once in the sql editor of your database:
CREATE OR REPLACE FUNCTION {name}(query text)
RETURNS json
LANGUAGE plpgsql
SECURITY DEFINER
AS $$
DECLARE
  result json;
BEGIN
  IF lower(ltrim(query)) LIKE 'select%' OR lower(ltrim(query)) LIKE 'with%' THEN
    EXECUTE format('SELECT coalesce(json_agg(t), ''[]''::json) FROM (%s) t', query) INTO result;
    RETURN json_build_object('success', true, 'rows', result);
  END IF;
  EXECUTE query;
  RETURN json_build_object('success', true);
EXCEPTION WHEN OTHERS THEN
  RETURN json_build_object('success', false, 'error', SQLERRM);
END;
$$;

GRANT EXECUTE ON FUNCTION {name}(text) TO anon;
GRANT EXECUTE ON FUNCTION {name}(text) TO authenticated;
""".strip()


def setup_script(function_name: str = "exec_sql") -> str:
    return SETUP_SQL_TEMPLATE.format(name=function_name)


# ----------------------------------------------------------------------
# parse outcomes
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class SelectStatement:
    table: str
    columns: str = "*"
    filter_column: str | None = None
    filter_value: Any = None
    limit: int = DEFAULT_SELECT_LIMIT


@dataclass(frozen=True)
class InsertStatement:
    table: str
    rows: List[Dict[str, Any]]


@dataclass(frozen=True)
class UpdateStatement:
    table: str
    values: Dict[str, Any]
    filter_column: str
    filter_value: Any


@dataclass(frozen=True)
class DeleteStatement:
    table: str
    filter_column: str
    filter_value: Any


@dataclass(frozen=True)
class SetupRequired:
    """ddl can't be expressed as row operations; the user has to install the sql function"""

    sql: str
    setup_sql: str = field(default_factory=setup_script)


@dataclass(frozen=True)
class Unparseable:
    sql: str
    reason: str


ParsedStatement = (
    SelectStatement
    | InsertStatement
    | UpdateStatement
    | DeleteStatement
    | SetupRequired
    | Unparseable
)


class _ParseError(ValueError):
    pass


# anything beyond one table and literal values
UNSUPPORTED_NODES = (
    exp.Join,
    exp.Subquery,
    exp.Union,
    exp.With,
    exp.Func,
    exp.Window,
    exp.Group,
    exp.Having,
    exp.Order,
    exp.Distinct,
    exp.OnConflict,
    exp.Returning,
)

DDL_NODES = (exp.Create, exp.Drop, exp.Alter)

_INTEGER_RE = re.compile(r"[+-]?\d+")


# ----------------------------------------------------------------------
# helpers
# ----------------------------------------------------------------------


def literal_value(node: exp.Expression) -> Any:
    """
    python value of one literal in the tree.

    precedence: quoted literal -> str, true/false -> bool, null -> None,
    numeric -> int/float, a bare word -> the word as a string.
    """
    if isinstance(node, exp.Literal):
        if node.is_string:
            return node.this
        return int(node.this) if _INTEGER_RE.fullmatch(node.this) else float(node.this)
    if isinstance(node, exp.Boolean):
        return node.this
    if isinstance(node, exp.Null):
        return None
    if isinstance(node, exp.Neg) and isinstance(node.this, exp.Literal) and node.this.is_number:
        return -literal_value(node.this)
    if isinstance(node, exp.Column) and not node.table and isinstance(node.this, exp.Identifier):
        return node.name
    raise _ParseError(f"only literal values are supported, got {node.sql(dialect=DIALECT)!r}")


def _single_table(statement: exp.Expression) -> str:
    tables = list(statement.find_all(exp.Table))
    if len(tables) != 1:
        raise _ParseError("statements must reference exactly one table")
    return tables[0].name


def _equality(where: exp.Where | None, verb: str) -> tuple[str, Any]:
    if where is None:
        raise _ParseError(f"refusing to {verb} without a WHERE clause")
    condition = where.this
    if not isinstance(condition, exp.EQ) or not isinstance(condition.this, exp.Column):
        raise _ParseError("only a single `column = value` condition is supported in WHERE")
    if isinstance(condition.expression, exp.Null):
        raise _ParseError("`= NULL` never matches any row, use IS NULL")
    return condition.this.name, literal_value(condition.expression)


def _leading_keyword(sql: str) -> str:
    match = re.match(r"\s*([a-zA-Z]+)", sql)
    return match.group(1).lower() if match else ""


# ----------------------------------------------------------------------
# per-statement parsers
# ----------------------------------------------------------------------


def _parse_select(statement: exp.Select) -> ParsedStatement:
    table = _single_table(statement)

    columns = []
    for column in statement.expressions:
        if isinstance(column, exp.Star):
            columns.append("*")
        elif isinstance(column, exp.Column) and isinstance(column.this, exp.Identifier):
            columns.append(column.name)
        else:
            raise _ParseError("only plain column names are supported in the select list")

    filter_column, filter_value = None, None
    where = statement.args.get("where")
    if where is not None:
        filter_column, filter_value = _equality(where, "SELECT")

    limit = DEFAULT_SELECT_LIMIT
    limit_node = statement.args.get("limit")
    if limit_node is not None:
        limit_expr = limit_node.args.get("expression")
        if not (isinstance(limit_expr, exp.Literal) and limit_expr.is_int):
            raise _ParseError("LIMIT must be a whole number")
        limit = int(limit_expr.this)

    return SelectStatement(
        table=table,
        columns="*" if columns == ["*"] else ",".join(columns),
        filter_column=filter_column,
        filter_value=filter_value,
        limit=limit,
    )


def _parse_insert(statement: exp.Insert) -> ParsedStatement:
    table = _single_table(statement)
    target, source = statement.this, statement.expression
    if not isinstance(target, exp.Schema) or not target.expressions:
        raise _ParseError("INSERT needs an explicit column list")
    if not isinstance(source, exp.Values):
        raise _ParseError("only `INSERT ... VALUES (...)` is supported")

    columns = [column.name for column in target.expressions]
    rows = []
    for values in source.expressions:
        if isinstance(values, exp.Tuple):
            items = values.expressions
        else:
            items = [values.this if isinstance(values, exp.Paren) else values]
        if len(items) != len(columns):
            raise _ParseError(f"{len(columns)} columns but {len(items)} values in the VALUES list")
        rows.append({column: literal_value(item) for column, item in zip(columns, items)})
    return InsertStatement(table=table, rows=rows)


def _parse_update(statement: exp.Update) -> ParsedStatement:
    table = _single_table(statement)
    column, value = _equality(statement.args.get("where"), "UPDATE")

    values = {}
    for assignment in statement.expressions:
        if not isinstance(assignment, exp.EQ) or not isinstance(assignment.this, exp.Column):
            raise _ParseError(f"unsupported assignment: {assignment.sql(dialect=DIALECT)!r}")
        values[assignment.this.name] = literal_value(assignment.expression)

    return UpdateStatement(table=table, values=values, filter_column=column, filter_value=value)


def _parse_delete(statement: exp.Delete) -> ParsedStatement:
    table = _single_table(statement)
    column, value = _equality(statement.args.get("where"), "DELETE")
    return DeleteStatement(table=table, filter_column=column, filter_value=value)


_PARSERS = {
    exp.Select: _parse_select,
    exp.Insert: _parse_insert,
    exp.Update: _parse_update,
    exp.Delete: _parse_delete,
}


def parse_statement(sql: str, sql_function: str = "exec_sql") -> ParsedStatement:
    """
    classify one sql statement.

    returns a *Statement for shapes that map onto table operations,
    SetupRequired for ddl, and Unparseable for everything else.
    """
    original = sql or ""
    text = original.strip().rstrip(";").strip()

    if _leading_keyword(text) in DDL_KEYWORDS:
        return SetupRequired(sql=original, setup_sql=setup_script(sql_function))
    if not text:
        return Unparseable(sql=original, reason="empty statement")

    try:
        statements = [s for s in sqlglot.parse(text, read=DIALECT) if s is not None]
    except SqlglotError as e:
        return Unparseable(sql=original, reason=f"sql syntax error: {e}")
    if len(statements) != 1:
        return Unparseable(sql=original, reason="only one statement at a time is supported")
    statement = statements[0]

    if isinstance(statement, DDL_NODES):
        return SetupRequired(sql=original, setup_sql=setup_script(sql_function))

    parser = _PARSERS.get(type(statement))
    if parser is None:
        return Unparseable(sql=original, reason="unsupported statement type")

    unsupported = statement.find(*UNSUPPORTED_NODES)
    if unsupported is not None:
        return Unparseable(
            sql=original,
            reason=f"{unsupported.key} is not supported, only single-table statements with literal values",
        )

    try:
        return parser(statement)
    except _ParseError as e:
        return Unparseable(sql=original, reason=str(e))
