# tools.py
"""
the fixed catalog of operations the model may call.

each operation's argument model is the single definition of what the model
may pass: the json schema in the tool spec is generated from it, and the
executor validates incoming arguments against the same model.
"""
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field, model_validator

FilterValue = str | int | float | bool


class ToolArguments(BaseModel):
    # strict: "5" is not a number and 5 is not a table name
    model_config = ConfigDict(strict=True, extra="ignore", frozen=True)


class ListTablesArgs(ToolArguments):
    pass


class DescribeTableArgs(ToolArguments):
    table_name: str = Field(min_length=1, description="name of the table")


class SelectDataArgs(ToolArguments):
    table_name: str = Field(min_length=1, description="name of the table")
    columns: str | None = Field(
        None,
        description="comma separated columns to return (optional, all columns by default)",
    )
    filter_column: str | None = Field(None, description="column to filter on (optional)")
    filter_value: FilterValue | None = Field(
        None, description="value the filter column must equal (optional)"
    )
    limit: int | None = Field(None, ge=1, description="maximum number of rows (default 50)")

    @model_validator(mode="after")
    def _filter_pair(self):
        if (self.filter_column is None) != (self.filter_value is None):
            raise ValueError("filter_column and filter_value must be given together")
        return self


class InsertDataArgs(ToolArguments):
    table_name: str = Field(min_length=1, description="name of the table")
    data: Dict[str, Any] = Field(description="the row to insert, as a json object")


class UpdateDataArgs(ToolArguments):
    table_name: str = Field(min_length=1, description="name of the table")
    filter_column: str = Field(min_length=1, description="column that selects the rows (e.g. id)")
    filter_value: FilterValue = Field(description="value the filter column must equal")
    data: Dict[str, Any] = Field(min_length=1, description="the new column values")


class DeleteDataArgs(ToolArguments):
    table_name: str = Field(min_length=1, description="name of the table")
    filter_column: str = Field(min_length=1, description="column that selects the rows")
    filter_value: FilterValue = Field(description="value the filter column must equal")


class ExecuteSqlArgs(ToolArguments):
    sql: str = Field(min_length=1, description="the sql statement to run")
    description: str | None = Field(None, description="short description of the operation")


@dataclass(frozen=True)
class OperationDescriptor:
    name: str
    description: str
    arguments: type[ToolArguments]

    def to_tool_spec(self) -> dict:
        parameters = self.arguments.model_json_schema()
        parameters.pop("title", None)
        parameters.setdefault("properties", {})
        parameters.setdefault("required", [])
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }


_OPERATIONS = (
    OperationDescriptor(
        "list_tables",
        "list every table in the connected database.",
        ListTablesArgs,
    ),
    OperationDescriptor(
        "describe_table",
        "describe one table: its columns and their types, inferred from a few sample rows.",
        DescribeTableArgs,
    ),
    OperationDescriptor(
        "select_data",
        "read rows from a table, optionally filtered by a single column equality.",
        SelectDataArgs,
    ),
    OperationDescriptor(
        "insert_data",
        "insert one new row into a table. returns the inserted row.",
        InsertDataArgs,
    ),
    OperationDescriptor(
        "update_data",
        "update the rows of a table where filter_column equals filter_value. returns the updated rows.",
        UpdateDataArgs,
    ),
    OperationDescriptor(
        "delete_data",
        "delete the rows of a table where filter_column equals filter_value. returns the deleted rows.",
        DeleteDataArgs,
    ),
    OperationDescriptor(
        "execute_sql",
        (
            "run a raw sql statement. use it for advanced operations such as "
            "CREATE TABLE, ALTER, DROP, or statements the other tools cannot express."
        ),
        ExecuteSqlArgs,
    ),
)

TOOL_REGISTRY = MappingProxyType({op.name: op for op in _OPERATIONS})

# what gets sent to the model on every completion call
TOOL_SPECS = tuple(op.to_tool_spec() for op in _OPERATIONS)


class UnknownOperationError(LookupError):
    pass


def validate_arguments(name: str, arguments: dict) -> ToolArguments:
    """
    check model supplied arguments against the operation's declared schema.

    raises UnknownOperationError for names outside the catalog and
    pydantic.ValidationError for missing fields or wrong primitive types.
    """
    descriptor = TOOL_REGISTRY.get(name)
    if descriptor is None:
        raise UnknownOperationError(f"unknown tool: {name}")
    return descriptor.arguments.model_validate(arguments)
