# executor.py
"""
runs tool invocations against the user's backend.

every outcome, good or bad, leaves this module as a ToolResult; the
orchestration loop never sees a backend exception.
"""
import logging
from typing import Any, Dict, List

from postgrest.exceptions import APIError
from pydantic import ValidationError

from schemas import ToolInvocation, ToolResult
from sql_parser import (
    DeleteStatement,
    InsertStatement,
    ParsedStatement,
    SelectStatement,
    SetupRequired,
    Unparseable,
    UpdateStatement,
    parse_statement,
)
from tools import (
    DeleteDataArgs,
    DescribeTableArgs,
    ExecuteSqlArgs,
    InsertDataArgs,
    ListTablesArgs,
    SelectDataArgs,
    UnknownOperationError,
    UpdateDataArgs,
    validate_arguments,
)

logger = logging.getLogger(__name__)

# tried one by one when the gateway doesn't publish its schema document
COMMON_TABLE_NAMES = (
    "users",
    "profiles",
    "customers",
    "products",
    "categories",
    "orders",
    "order_items",
    "items",
    "posts",
    "comments",
    "messages",
    "todos",
    "tasks",
    "projects",
    "invoices",
    "payments",
    "employees",
    "settings",
)

DESCRIBE_SAMPLE_SIZE = 5


def json_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, list):
        return "array"
    return type(value).__name__


def error_message(error: Exception) -> str:
    if isinstance(error, APIError) and error.message:
        return error.message
    return str(error) or type(error).__name__


def _describe_validation_error(error: ValidationError) -> str:
    problems = []
    for err in error.errors():
        location = ".".join(str(part) for part in err["loc"]) or "arguments"
        problems.append(f"{location}: {err['msg']}")
    return "; ".join(problems)


def _rows_result(rows: List[Dict[str, Any]], message: str | None = None) -> ToolResult:
    return ToolResult.ok({"rows": rows, "count": len(rows)}, message=message)


class DataOperationExecutor:
    def __init__(
        self,
        backend,
        default_limit: int = 50,
        max_limit: int = 1000,
        sql_function: str | None = "exec_sql",
        probe_tables: tuple = COMMON_TABLE_NAMES,
    ):
        self.backend = backend
        self.default_limit = default_limit
        self.max_limit = max_limit
        self.sql_function = sql_function
        self.probe_tables = probe_tables

        # operation name -> handler, one entry per registry operation
        self._handlers = {
            "list_tables": self.list_tables,
            "describe_table": self.describe_table,
            "select_data": self.select_data,
            "insert_data": self.insert_data,
            "update_data": self.update_data,
            "delete_data": self.delete_data,
            "execute_sql": self.execute_sql,
        }

    def execute(self, invocation: ToolInvocation) -> ToolResult:
        """
        validate and run one invocation.

        behavior:
        - arguments that aren't a json object, unknown tool names and
          arguments that don't fit the declared schema are rejected
          without touching the backend
        - any exception raised while running the operation is turned
          into a failed envelope carrying its message
        """
        logger.info("executing tool %s (call %s)", invocation.name, invocation.id)

        if invocation.arguments is None:
            return ToolResult.fail(
                f"arguments for {invocation.name} are not a valid json object",
                data={"arguments": invocation.raw_arguments},
            )

        try:
            args = validate_arguments(invocation.name, invocation.arguments)
        except UnknownOperationError as e:
            return ToolResult.fail(str(e))
        except ValidationError as e:
            return ToolResult.fail(
                f"invalid arguments for {invocation.name}: {_describe_validation_error(e)}"
            )

        try:
            return self._handlers[invocation.name](args)
        except Exception as e:
            logger.warning("tool %s failed: %s", invocation.name, error_message(e))
            return ToolResult.fail(error_message(e), data={"tool": invocation.name})

    def _clamp(self, limit: int | None) -> int:
        return min(limit or self.default_limit, self.max_limit)

    # ------------------------------------------------------------------
    # structured operations
    # ------------------------------------------------------------------

    def list_tables(self, args: ListTablesArgs) -> ToolResult:
        tables = self.backend.list_collections()
        if tables is None:
            logger.info("falling back to probing %d common table names", len(self.probe_tables))
            tables = self._probe_tables()

        if not tables:
            return ToolResult.ok(
                {"tables": [], "count": 0},
                message="the database is empty, no tables were found",
            )
        return ToolResult.ok({"tables": tables, "count": len(tables)})

    def _probe_tables(self) -> List[str]:
        found = []
        for name in self.probe_tables:
            try:
                self.backend.select_rows(name, limit=1)
            except Exception as e:
                logger.debug("probe of %s failed: %s", name, error_message(e))
                continue
            found.append(name)
        return found

    def describe_table(self, args: DescribeTableArgs) -> ToolResult:
        table = args.table_name
        try:
            sample = self.backend.select_rows(table, limit=DESCRIBE_SAMPLE_SIZE)
        except Exception as e:
            return ToolResult.fail(
                f"table {table!r} does not exist or can't be read: {error_message(e)}",
                data={"table_name": table},
            )

        if not sample:
            return ToolResult.ok(
                {"table_name": table, "columns": {}, "row_count": 0, "empty": True},
                message="the table exists but is empty, so column types can't be inferred",
            )

        # first non-null value decides a column's type
        columns: Dict[str, str] = {}
        for row in sample:
            for key, value in row.items():
                if columns.get(key) in (None, "null"):
                    columns[key] = json_type(value)

        return ToolResult.ok(
            {
                "table_name": table,
                "columns": columns,
                "sample_data": sample,
                "row_count": len(sample),
            }
        )

    def select_data(self, args: SelectDataArgs) -> ToolResult:
        limit = self._clamp(args.limit)
        rows = self.backend.select_rows(
            args.table_name,
            columns=args.columns or "*",
            filter_column=args.filter_column,
            filter_value=args.filter_value,
            limit=limit,
        )
        return _rows_result(rows[:limit])

    def insert_data(self, args: InsertDataArgs) -> ToolResult:
        rows = self.backend.insert_rows(args.table_name, dict(args.data))
        return _rows_result(rows, message=f"inserted {len(rows)} row(s) into {args.table_name}")

    def update_data(self, args: UpdateDataArgs) -> ToolResult:
        rows = self.backend.update_rows(
            args.table_name, dict(args.data), args.filter_column, args.filter_value
        )
        return _rows_result(rows, message=_affected("updated", rows, args.filter_column))

    def delete_data(self, args: DeleteDataArgs) -> ToolResult:
        rows = self.backend.delete_rows(args.table_name, args.filter_column, args.filter_value)
        return _rows_result(rows, message=_affected("deleted", rows, args.filter_column))

    # ------------------------------------------------------------------
    # raw sql
    # ------------------------------------------------------------------

    def execute_sql(self, args: ExecuteSqlArgs) -> ToolResult:
        """
        run raw sql.

        the native sql function is tried first when one is configured; if it
        is missing, unreachable or reports a failure, the statement parser
        maps the sql onto table operations instead.
        """
        sql = args.sql
        logger.info("execute_sql: %s", args.description or "no description given")

        native_error = None
        if self.sql_function:
            try:
                result = self.backend.execute_sql(sql.strip().rstrip(";"))
            except Exception as e:
                logger.info("sql function unavailable, using the statement parser: %s", error_message(e))
            else:
                if not (isinstance(result, dict) and result.get("success") is False):
                    return _native_result(result)
                native_error = str(result.get("error") or "the sql function reported a failure")
                logger.info("sql function rejected the statement: %s", native_error)

        parsed = parse_statement(sql, self.sql_function or "exec_sql")
        if native_error is not None and isinstance(parsed, (SetupRequired, Unparseable)):
            # the function exists, so its own error is the useful one
            return ToolResult.fail(native_error, data={"sql": sql})
        return self._run_parsed(parsed)

    def _run_parsed(self, parsed: ParsedStatement) -> ToolResult:
        if isinstance(parsed, SetupRequired):
            return ToolResult(
                success=False,
                error="schema changes need the sql function, which isn't installed",
                message="run setup_sql once in the database's sql editor, then retry",
                requires_setup=True,
                setup_sql=parsed.setup_sql,
                data={"requested_sql": parsed.sql},
            )

        if isinstance(parsed, Unparseable):
            return ToolResult.fail(
                f"could not parse the sql statement: {parsed.reason}",
                data={"sql": parsed.sql},
            )

        if isinstance(parsed, SelectStatement):
            limit = min(parsed.limit, self.max_limit)
            rows = self.backend.select_rows(
                parsed.table,
                columns=parsed.columns,
                filter_column=parsed.filter_column,
                filter_value=parsed.filter_value,
                limit=limit,
            )
            return _rows_result(rows[:limit])

        if isinstance(parsed, InsertStatement):
            payload = parsed.rows[0] if len(parsed.rows) == 1 else parsed.rows
            rows = self.backend.insert_rows(parsed.table, payload)
            return _rows_result(rows, message=f"inserted {len(rows)} row(s) into {parsed.table}")

        if isinstance(parsed, UpdateStatement):
            rows = self.backend.update_rows(
                parsed.table, parsed.values, parsed.filter_column, parsed.filter_value
            )
            return _rows_result(rows, message=_affected("updated", rows, parsed.filter_column))

        if isinstance(parsed, DeleteStatement):
            rows = self.backend.delete_rows(parsed.table, parsed.filter_column, parsed.filter_value)
            return _rows_result(rows, message=_affected("deleted", rows, parsed.filter_column))

        raise TypeError(f"unhandled statement: {parsed!r}")


def _affected(verb: str, rows: list, column: str) -> str:
    if not rows:
        return f"no rows matched the {column} filter, nothing was {verb}"
    return f"{verb} {len(rows)} row(s)"


def _native_result(result: Any) -> ToolResult:
    if isinstance(result, dict) and "rows" in result:
        rows = result.get("rows") or []
        return _rows_result(rows)
    return ToolResult.ok({"result": result}, message="statement executed")
