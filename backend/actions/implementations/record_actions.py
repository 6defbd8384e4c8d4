"""Generic record actions over allow-listed tables.

Uses SQLAlchemy Core against ``Base.metadata`` so any registered table can
be targeted by name, restricted to ``WORKFLOW_RECORD_TABLES``.

Params:
    table: table name (required)
    data: column values (create_record / update_record)
    record_id: primary key (update / delete)
    filters: {column: value}; a list value means IN, null means IS NULL
    select: column list or comma-separated string (run_query)
    order_by: "column" or "column:desc" (run_query)
    limit: max rows (run_query, default 100)
"""

from datetime import datetime
from typing import Any, Dict
from uuid import uuid4

from sqlalchemy import DateTime, Table, delete, insert, select, update

from actions.base_action import ActionResult, BaseAction
from app.config import get_settings
from core.exceptions import ActionConfigError
from db.base import Base
from workflow.context import parse_timestamp

MAX_QUERY_LIMIT = 1000


def _resolve_table(name: Any) -> Table:
    import db.models  # noqa: F401  registers every table

    if not name or not isinstance(name, str):
        raise ActionConfigError("Missing required parameter 'table'")
    if name not in get_settings().WORKFLOW_RECORD_TABLES:
        raise ActionConfigError(f"Table '{name}' is not available to workflows")
    table = Base.metadata.tables.get(name)
    if table is None:
        raise ActionConfigError(f"Unknown table '{name}'")
    return table


def _column(table: Table, name: str):
    if name not in table.c:
        raise ActionConfigError(f"Unknown column '{name}' on table '{table.name}'")
    return table.c[name]


def _coerce_values(table: Table, data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict) or not data:
        raise ActionConfigError("Parameter 'data' must be a non-empty object")
    values = {}
    for key, value in data.items():
        column = _column(table, key)
        if isinstance(column.type, DateTime) and isinstance(value, str) and value:
            value = parse_timestamp(value)
        values[key] = value
    return values


def _where_clauses(table: Table, params: Dict[str, Any], required: bool) -> list:
    clauses = []
    if params.get("record_id"):
        clauses.append(_column(table, "id") == params["record_id"])
    filters = params.get("filters") or {}
    if not isinstance(filters, dict):
        raise ActionConfigError("Parameter 'filters' must be an object")
    for key, value in filters.items():
        column = _column(table, key)
        if isinstance(value, (list, tuple)):
            clauses.append(column.in_(list(value)))
        elif value is None:
            clauses.append(column.is_(None))
        else:
            clauses.append(column == value)
    if required and not clauses:
        raise ActionConfigError("Either 'record_id' or 'filters' is required")
    return clauses


def _row_to_dict(row) -> Dict[str, Any]:
    return {
        key: value.isoformat() if isinstance(value, datetime) else value
        for key, value in row._mapping.items()
    }


class CreateRecordAction(BaseAction):
    action_type = "create_record"
    display_name = "Create Record"
    description = "Insert a row into an allow-listed table"

    async def execute(self, params: Dict[str, Any], context) -> ActionResult:
        table = _resolve_table(params.get("table"))
        values = _coerce_values(table, params.get("data"))
        if "id" in table.c:
            values.setdefault("id", str(uuid4()))

        async with self.require_session_factory()() as session:
            await session.execute(insert(table).values(**values))
            row = (await session.execute(
                select(table).where(table.c.id == values["id"])
            )).first() if "id" in values else None
            await session.commit()

        record = _row_to_dict(row) if row is not None else values
        return ActionResult.ok({"id": values.get("id"), "record": record})


class UpdateRecordAction(BaseAction):
    action_type = "update_record"
    display_name = "Update Record"
    description = "Update rows of an allow-listed table by id or filters"

    async def execute(self, params: Dict[str, Any], context) -> ActionResult:
        table = _resolve_table(params.get("table"))
        values = _coerce_values(table, params.get("data"))
        clauses = _where_clauses(table, params, required=True)

        async with self.require_session_factory()() as session:
            result = await session.execute(update(table).where(*clauses).values(**values))
            await session.commit()

        return ActionResult.ok({"updated": result.rowcount})


class DeleteRecordAction(BaseAction):
    action_type = "delete_record"
    display_name = "Delete Record"
    description = "Delete rows of an allow-listed table by id or filters"

    async def execute(self, params: Dict[str, Any], context) -> ActionResult:
        table = _resolve_table(params.get("table"))
        clauses = _where_clauses(table, params, required=True)

        async with self.require_session_factory()() as session:
            result = await session.execute(delete(table).where(*clauses))
            await session.commit()

        return ActionResult.ok({"deleted": result.rowcount})


class RunQueryAction(BaseAction):
    action_type = "run_query"
    display_name = "Run Query"
    description = "Read rows from an allow-listed table"

    async def execute(self, params: Dict[str, Any], context) -> ActionResult:
        table = _resolve_table(params.get("table"))

        selected = params.get("select") or "*"
        if selected == "*":
            stmt = select(table)
        else:
            names = self.as_list(selected)
            stmt = select(*[_column(table, name) for name in names])

        clauses = _where_clauses(table, params, required=False)
        if clauses:
            stmt = stmt.where(*clauses)

        order_by = params.get("order_by")
        if order_by:
            name, _, direction = str(order_by).partition(":")
            column = _column(table, name.strip())
            stmt = stmt.order_by(column.desc() if direction.strip().lower() == "desc" else column.asc())

        try:
            limit = int(params.get("limit") or 100)
        except (TypeError, ValueError):
            raise ActionConfigError(f"Invalid limit: {params.get('limit')!r}")
        stmt = stmt.limit(max(1, min(limit, MAX_QUERY_LIMIT)))

        async with self.require_session_factory()() as session:
            rows = (await session.execute(stmt)).all()

        records = [_row_to_dict(row) for row in rows]
        return ActionResult.ok({"rows": records, "count": len(records)})


RECORD_ACTION_TYPES = {
    "create_record": CreateRecordAction,
    "update_record": UpdateRecordAction,
    "delete_record": DeleteRecordAction,
    "run_query": RunQueryAction,
}
