"""
DynamoDB request builders for resolver code.

Build the request descriptors the DYNAMODB data source consumes, from
plain Python values and declarative filters:

    from appsync_local import dynamodb as ddb

    def request(ctx):
        return ddb.query(
            query={"pk": {"eq": ctx.args["pk"]}, "sk": {"beginsWith": "TASK#"}},
            filter={"status": {"ne": "ARCHIVED"}},
            limit=20,
        )

    def request(ctx):
        return ddb.update(
            key={"id": ctx.args["id"]},
            update=[ddb.operations.replace("title", ctx.args["title"]),
                    ddb.operations.increment("version")],
        )
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any

from .errors import UserResolverError
from .util import build_expression

_KEY_OPERATORS = {"eq", "le", "lt", "ge", "gt", "between", "beginsWith"}


# =============================================================================
# Update operations
# =============================================================================


@dataclass(frozen=True)
class UpdateOperation:
    kind: str
    path: str
    value: Any = None
    index: int | None = None


class operations:  # noqa: N801
    """Update operation markers, used inside update(update=[...])."""

    @staticmethod
    def add(path: str, value: Any) -> UpdateOperation:
        """Set the attribute only when it does not exist yet."""
        return UpdateOperation("add", path, value)

    @staticmethod
    def remove(path: str) -> UpdateOperation:
        return UpdateOperation("remove", path)

    @staticmethod
    def replace(path: str, value: Any) -> UpdateOperation:
        return UpdateOperation("replace", path, value)

    @staticmethod
    def increment(path: str, by: int | float = 1) -> UpdateOperation:
        return UpdateOperation("increment", path, by)

    @staticmethod
    def decrement(path: str, by: int | float = 1) -> UpdateOperation:
        return UpdateOperation("decrement", path, by)

    @staticmethod
    def append(path: str, values: list[Any]) -> UpdateOperation:
        return UpdateOperation("append", path, list(values))

    @staticmethod
    def prepend(path: str, values: list[Any]) -> UpdateOperation:
        return UpdateOperation("prepend", path, list(values))

    @staticmethod
    def update_list_item(path: str, value: Any, index: int) -> UpdateOperation:
        return UpdateOperation("updateListItem", path, value, index)


def build_update_expression(update: dict[str, Any] | list[UpdateOperation]) -> dict[str, Any]:
    """
    Build an update expression.

    Accepts either a list of UpdateOperation, or a {path: value} dict in
    which values may themselves be UpdateOperation (their path is taken from
    the dict key).
    """
    set_parts: list[str] = []
    remove_parts: list[str] = []
    names: dict[str, str] = {}
    values: dict[str, Any] = {}

    def _name(path: str) -> str:
        key = f"#n{len(names)}"
        names[key] = path
        return key

    def _value(value: Any) -> str:
        key = f":v{len(values)}"
        values[key] = value
        return key

    def _apply(op: UpdateOperation) -> None:
        name = _name(op.path)
        if op.kind == "remove":
            remove_parts.append(name)
        elif op.kind == "add":
            set_parts.append(f"{name} = if_not_exists({name}, {_value(op.value)})")
        elif op.kind == "replace":
            set_parts.append(f"{name} = {_value(op.value)}")
        elif op.kind == "increment":
            set_parts.append(f"{name} = {name} + {_value(op.value)}")
        elif op.kind == "decrement":
            set_parts.append(f"{name} = {name} - {_value(op.value)}")
        elif op.kind == "append":
            set_parts.append(f"{name} = list_append({name}, {_value(op.value)})")
        elif op.kind == "prepend":
            set_parts.append(f"{name} = list_append({_value(op.value)}, {name})")
        elif op.kind == "updateListItem":
            set_parts.append(f"{name}[{op.index}] = {_value(op.value)}")

    if isinstance(update, dict):
        for path, value in update.items():
            if isinstance(value, UpdateOperation):
                _apply(UpdateOperation(value.kind, path, value.value, value.index))
            else:
                _apply(UpdateOperation("replace", path, value))
    else:
        for op in update:
            _apply(op)

    parts = []
    if set_parts:
        parts.append(f"SET {', '.join(set_parts)}")
    if remove_parts:
        parts.append(f"REMOVE {', '.join(remove_parts)}")

    return {"expression": " ".join(parts), "expressionNames": names, "expressionValues": values}


def build_key_condition(query_obj: dict[str, Any]) -> dict[str, Any]:
    """
    Raises:
        UserResolverError: Operator not allowed in a key condition
    """
    for field_name, condition in query_obj.items():
        for op in (condition if isinstance(condition, dict) else {}):
            if op not in _KEY_OPERATORS:
                raise UserResolverError(
                    f"Operator '{op}' is not allowed in a key condition on '{field_name}'"
                )
    return build_expression(query_obj, name_prefix="#k")


# =============================================================================
# Single-item requests
# =============================================================================


def get(
    key: dict[str, Any],
    *,
    consistent_read: bool | None = None,
    projection: list[str] | None = None,
) -> dict[str, Any]:
    request: dict[str, Any] = {"operation": "GetItem", "key": key}
    if consistent_read is not None:
        request["consistentRead"] = consistent_read
    if projection:
        request["projection"] = projection
    return request


def put(
    key: dict[str, Any],
    item: dict[str, Any],
    *,
    condition: dict[str, Any] | None = None,
) -> dict[str, Any]:
    request: dict[str, Any] = {"operation": "PutItem", "key": key, "attributeValues": item}
    if condition:
        request["condition"] = build_expression(condition)
    return request


def remove(key: dict[str, Any], *, condition: dict[str, Any] | None = None) -> dict[str, Any]:
    request: dict[str, Any] = {"operation": "DeleteItem", "key": key}
    if condition:
        request["condition"] = build_expression(condition)
    return request


def update(
    key: dict[str, Any],
    update: dict[str, Any] | list[UpdateOperation],
    *,
    condition: dict[str, Any] | None = None,
) -> dict[str, Any]:
    request: dict[str, Any] = {
        "operation": "UpdateItem",
        "key": key,
        "update": build_update_expression(update),
    }
    if condition:
        request["condition"] = build_expression(condition)
    return request


# =============================================================================
# Query / Scan / Sync
# =============================================================================


def _list_options(
    request: dict[str, Any],
    *,
    index: str | None,
    limit: int | None,
    next_token: str | None,
    filter: dict[str, Any] | None,
    consistent_read: bool | None,
    select: str | None,
    projection: list[str] | None,
) -> dict[str, Any]:
    if index:
        request["index"] = index
    if limit:
        request["limit"] = limit
    if next_token:
        request["nextToken"] = next_token
    if filter:
        request["filter"] = build_expression(filter)
    if consistent_read is not None:
        request["consistentRead"] = consistent_read
    if select:
        request["select"] = select
    if projection:
        request["projection"] = projection
    return request


def query(
    query: dict[str, Any],
    *,
    index: str | None = None,
    limit: int | None = None,
    next_token: str | None = None,
    filter: dict[str, Any] | None = None,
    consistent_read: bool | None = None,
    scan_index_forward: bool | None = None,
    select: str | None = None,
    projection: list[str] | None = None,
) -> dict[str, Any]:
    request = _list_options(
        {"operation": "Query", "query": build_key_condition(query)},
        index=index,
        limit=limit,
        next_token=next_token,
        filter=filter,
        consistent_read=consistent_read,
        select=select,
        projection=projection,
    )
    if scan_index_forward is not None:
        request["scanIndexForward"] = scan_index_forward
    return request


def scan(
    *,
    index: str | None = None,
    limit: int | None = None,
    next_token: str | None = None,
    filter: dict[str, Any] | None = None,
    consistent_read: bool | None = None,
    select: str | None = None,
    projection: list[str] | None = None,
    total_segments: int | None = None,
    segment: int | None = None,
) -> dict[str, Any]:
    request = _list_options(
        {"operation": "Scan"},
        index=index,
        limit=limit,
        next_token=next_token,
        filter=filter,
        consistent_read=consistent_read,
        select=select,
        projection=projection,
    )
    if total_segments is not None:
        request["totalSegments"] = total_segments
    if segment is not None:
        request["segment"] = segment
    return request


def sync(
    *,
    query: dict[str, Any] | None = None,
    limit: int | None = None,
    next_token: str | None = None,
    last_sync: int | None = None,
    filter: dict[str, Any] | None = None,
) -> dict[str, Any]:
    request: dict[str, Any] = {"operation": "Sync"}
    if query:
        request["query"] = build_key_condition(query)
    if limit:
        request["limit"] = limit
    if next_token:
        request["nextToken"] = next_token
    if last_sync is not None:
        request["lastSync"] = last_sync
    if filter:
        request["filter"] = build_expression(filter)
    return request


# =============================================================================
# Batch / Transact
# =============================================================================


def batch_get(tables: dict[str, dict[str, Any]]) -> dict[str, Any]:
    """tables: {table: {"keys": [...], "consistentRead": bool, "projection": [...]}}"""
    return {"operation": "BatchGetItem", "tables": tables}


def batch_put(tables: dict[str, list[dict[str, Any]]]) -> dict[str, Any]:
    return {"operation": "BatchPutItem", "tables": tables}


def batch_delete(tables: dict[str, list[dict[str, Any]]]) -> dict[str, Any]:
    return {"operation": "BatchDeleteItem", "tables": tables}


def transact_get(items: list[dict[str, Any]]) -> dict[str, Any]:
    """items: [{"table": ..., "key": {...}, "projection": [...]}]"""
    return {"operation": "TransactGetItems", "transactItems": items}


def transact_write(items: list[dict[str, Any]]) -> dict[str, Any]:
    """
    items: one of
        {"put_item": {"table", "key", "item", "condition"?}}
        {"update_item": {"table", "key", "update", "condition"?}}
        {"delete_item": {"table", "key", "condition"?}}
        {"condition_check": {"table", "key", "condition"}}
    """
    transact_items: list[dict[str, Any]] = []
    for item in items:
        if "put_item" in item:
            spec = item["put_item"]
            entry = {
                "table": spec["table"],
                "operation": "PutItem",
                "key": spec["key"],
                "attributeValues": spec["item"],
            }
        elif "update_item" in item:
            spec = item["update_item"]
            entry = {
                "table": spec["table"],
                "operation": "UpdateItem",
                "key": spec["key"],
                "update": build_update_expression(spec["update"]),
            }
        elif "delete_item" in item:
            spec = item["delete_item"]
            entry = {"table": spec["table"], "operation": "DeleteItem", "key": spec["key"]}
        elif "condition_check" in item:
            spec = item["condition_check"]
            entry = {"table": spec["table"], "operation": "ConditionCheck", "key": spec["key"]}
        else:
            raise UserResolverError(f"Unknown transact write item: {sorted(item)}")

        if spec.get("condition"):
            entry["condition"] = build_expression(spec["condition"])
        transact_items.append(entry)

    return {"operation": "TransactWriteItems", "transactItems": transact_items}


# =============================================================================
# Set converters
# =============================================================================
# Native sets are written as DynamoDB sets (SS / NS / BS) by the data source.


def to_string_set(values: list[str]) -> set[str]:
    return set(values)


def to_number_set(values: list[int | float]) -> set[int | float]:
    return set(values)


def to_binary_set(values: list[str]) -> set[bytes]:
    """Values are base64-encoded strings."""
    return {base64.b64decode(v) for v in values}
