"""Tool call and tool output storage.

Tool calls are keyed by (conversation_id, provider call id) and hang off the
assistant message that emitted them. Tool outputs reference their call by
tool_call_id only (no foreign key), hang off the message that carries them,
and keep their multiplicity.

Insert helpers prefixed with an underscore do not commit; they are shared
with operations that need them inside a larger transaction.
"""

from collections import defaultdict
from collections.abc import Iterable, Mapping
from typing import Any, NamedTuple

from sqlalchemy import bindparam, text
from sqlalchemy.orm import Session

from chatstore.db.models import utc_now_iso
from chatstore.db.session import transaction
from chatstore.errors import InvalidArgumentError, StoreErrorCode
from chatstore.logging import get_logger
from chatstore.schemas.message import ToolCallOut, ToolFunction, ToolOutputOut
from chatstore.services.content import dumps_compact

logger = get_logger(__name__)

DEFAULT_CONVERSATION_LIMIT = 100

_TOOL_CALL_COLUMNS = "id, message_id, conversation_id, call_index, tool_name, arguments, text_offset, created_at"
_TOOL_OUTPUT_COLUMNS = "id, tool_call_id, message_id, conversation_id, output, status, executed_at"


class ArtifactDeleteResult(NamedTuple):
    tool_calls_deleted: int
    tool_outputs_deleted: int


# =============================================================================
# Normalization
# =============================================================================


def _to_text(value: Any) -> str:
    return value if isinstance(value, str) else dumps_compact(value)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def normalize_tool_call(raw: Mapping[str, Any], position: int) -> dict[str, Any]:
    """Flatten an OpenAI-style or flat tool call into column values.

    Accepts ``{"id", "function": {"name", "arguments"}}`` or flat
    ``name``/``arguments``. call_index defaults to position; text_offset is
    kept only when it is an int.

    Raises:
        InvalidArgumentError: If the call has no id or no tool name.
    """
    function = raw.get("function") or {}
    name = function.get("name") or raw.get("name") or raw.get("tool_name")
    arguments = function.get("arguments") or raw.get("arguments") or "{}"
    if not raw.get("id") or not name:
        raise InvalidArgumentError(
            StoreErrorCode.E_INVALID_ARGUMENT, "Tool call requires an id and a tool name"
        )

    index = raw.get("index")
    offset = raw.get("text_offset", raw.get("textOffset"))
    return {
        "id": raw["id"],
        "call_index": index if _is_int(index) else position,
        "tool_name": name,
        "arguments": _to_text(arguments),
        "text_offset": offset if _is_int(offset) else None,
    }


def _row_to_call(row) -> ToolCallOut:
    return ToolCallOut(
        id=row.id,
        index=row.call_index,
        function=ToolFunction(name=row.tool_name, arguments=row.arguments),
        text_offset=row.text_offset,
        message_id=row.message_id,
    )


def _row_to_output(row) -> ToolOutputOut:
    return ToolOutputOut(
        id=row.id,
        tool_call_id=row.tool_call_id,
        output=row.output,
        status=row.status,
        message_id=row.message_id,
        executed_at=row.executed_at,
    )


# =============================================================================
# Inserts
# =============================================================================


def _insert_tool_calls(
    db: Session, message_id: int, conversation_id: str, tool_calls: Iterable[Mapping[str, Any]]
) -> list[ToolCallOut]:
    now = utc_now_iso()
    inserted = []
    for position, raw in enumerate(tool_calls):
        values = normalize_tool_call(raw, position)
        db.execute(
            text("""
                INSERT INTO tool_calls
                    (id, message_id, conversation_id, call_index, tool_name, arguments, text_offset, created_at)
                VALUES
                    (:id, :message_id, :conversation_id, :call_index, :tool_name, :arguments, :text_offset, :now)
            """),
            {**values, "message_id": message_id, "conversation_id": conversation_id, "now": now},
        )
        inserted.append(
            ToolCallOut(
                id=values["id"],
                index=values["call_index"],
                function=ToolFunction(name=values["tool_name"], arguments=values["arguments"]),
                text_offset=values["text_offset"],
                message_id=message_id,
            )
        )
    return inserted


def _insert_tool_outputs(
    db: Session, message_id: int, conversation_id: str, tool_outputs: Iterable[Mapping[str, Any]]
) -> list[ToolOutputOut]:
    now = utc_now_iso()
    inserted = []
    for raw in tool_outputs:
        tool_call_id = raw.get("tool_call_id")
        if not tool_call_id:
            raise InvalidArgumentError(StoreErrorCode.E_INVALID_ARGUMENT, "Tool output requires a tool_call_id")
        output = _to_text(raw.get("output", ""))
        status = raw.get("status") or "success"
        result = db.execute(
            text("""
                INSERT INTO tool_outputs (tool_call_id, message_id, conversation_id, output, status, executed_at)
                VALUES (:tool_call_id, :message_id, :conversation_id, :output, :status, :now)
            """),
            {
                "tool_call_id": tool_call_id,
                "message_id": message_id,
                "conversation_id": conversation_id,
                "output": output,
                "status": status,
                "now": now,
            },
        )
        inserted.append(
            ToolOutputOut(
                id=result.lastrowid,
                tool_call_id=tool_call_id,
                output=output,
                status=status,
                message_id=message_id,
                executed_at=now,
            )
        )
    return inserted


def insert_tool_calls(
    db: Session, message_id: int, conversation_id: str, tool_calls: list[Mapping[str, Any]] | None
) -> list[ToolCallOut]:
    """Record the tool calls emitted by a message.

    Raises:
        InvalidArgumentError: If a call lacks an id or a name.
        ConflictError: If a call id is already used in the conversation.
    """
    if not tool_calls:
        return []
    with transaction(db):
        inserted = _insert_tool_calls(db, message_id, conversation_id, tool_calls)
    logger.debug("tool_calls_inserted", message_id=message_id, count=len(inserted))
    return inserted


def insert_tool_outputs(
    db: Session, message_id: int, conversation_id: str, tool_outputs: list[Mapping[str, Any]] | None
) -> list[ToolOutputOut]:
    """Record tool outputs carried by a message. status defaults to 'success'."""
    if not tool_outputs:
        return []
    with transaction(db):
        inserted = _insert_tool_outputs(db, message_id, conversation_id, tool_outputs)
    logger.debug("tool_outputs_inserted", message_id=message_id, count=len(inserted))
    return inserted


# =============================================================================
# Reads
# =============================================================================


def get_tool_calls_by_message_id(db: Session, message_id: int) -> list[ToolCallOut]:
    rows = db.execute(
        text(f"""
            SELECT {_TOOL_CALL_COLUMNS}
            FROM tool_calls
            WHERE message_id = :message_id
            ORDER BY call_index ASC
        """),
        {"message_id": message_id},
    ).fetchall()
    return [_row_to_call(row) for row in rows]


def get_tool_calls_by_message_ids(db: Session, message_ids: list[int]) -> dict[int, list[ToolCallOut]]:
    """Batch-load tool calls for many messages with one query, grouped by message id."""
    if not message_ids:
        return {}
    rows = db.execute(
        text(f"""
            SELECT {_TOOL_CALL_COLUMNS}
            FROM tool_calls
            WHERE message_id IN :message_ids
            ORDER BY message_id ASC, call_index ASC
        """).bindparams(bindparam("message_ids", expanding=True)),
        {"message_ids": list(message_ids)},
    ).fetchall()
    grouped: dict[int, list[ToolCallOut]] = defaultdict(list)
    for row in rows:
        grouped[row.message_id].append(_row_to_call(row))
    return dict(grouped)


def get_tool_calls_by_conversation_id(
    db: Session, conversation_id: str, limit: int = DEFAULT_CONVERSATION_LIMIT
) -> list[ToolCallOut]:
    """Most recent tool calls of a conversation."""
    rows = db.execute(
        text(f"""
            SELECT {_TOOL_CALL_COLUMNS}
            FROM tool_calls
            WHERE conversation_id = :conversation_id
            ORDER BY created_at DESC, call_index ASC
            LIMIT :limit
        """),
        {"conversation_id": conversation_id, "limit": limit},
    ).fetchall()
    return [_row_to_call(row) for row in rows]


def get_tool_outputs_by_tool_call_id(db: Session, tool_call_id: str) -> list[ToolOutputOut]:
    rows = db.execute(
        text(f"""
            SELECT {_TOOL_OUTPUT_COLUMNS}
            FROM tool_outputs
            WHERE tool_call_id = :tool_call_id
            ORDER BY executed_at ASC, id ASC
        """),
        {"tool_call_id": tool_call_id},
    ).fetchall()
    return [_row_to_output(row) for row in rows]


def get_tool_outputs_by_tool_call_ids(
    db: Session, tool_call_ids: list[str]
) -> dict[str, list[ToolOutputOut]]:
    if not tool_call_ids:
        return {}
    rows = db.execute(
        text(f"""
            SELECT {_TOOL_OUTPUT_COLUMNS}
            FROM tool_outputs
            WHERE tool_call_id IN :tool_call_ids
            ORDER BY tool_call_id ASC, executed_at ASC, id ASC
        """).bindparams(bindparam("tool_call_ids", expanding=True)),
        {"tool_call_ids": list(tool_call_ids)},
    ).fetchall()
    grouped: dict[str, list[ToolOutputOut]] = defaultdict(list)
    for row in rows:
        grouped[row.tool_call_id].append(_row_to_output(row))
    return dict(grouped)


def get_tool_outputs_by_message_id(db: Session, message_id: int) -> list[ToolOutputOut]:
    rows = db.execute(
        text(f"""
            SELECT {_TOOL_OUTPUT_COLUMNS}
            FROM tool_outputs
            WHERE message_id = :message_id
            ORDER BY executed_at ASC, id ASC
        """),
        {"message_id": message_id},
    ).fetchall()
    return [_row_to_output(row) for row in rows]


def get_tool_outputs_by_message_ids(db: Session, message_ids: list[int]) -> dict[int, list[ToolOutputOut]]:
    """Batch-load tool outputs for many messages with one query, grouped by message id."""
    if not message_ids:
        return {}
    rows = db.execute(
        text(f"""
            SELECT {_TOOL_OUTPUT_COLUMNS}
            FROM tool_outputs
            WHERE message_id IN :message_ids
            ORDER BY message_id ASC, executed_at ASC, id ASC
        """).bindparams(bindparam("message_ids", expanding=True)),
        {"message_ids": list(message_ids)},
    ).fetchall()
    grouped: dict[int, list[ToolOutputOut]] = defaultdict(list)
    for row in rows:
        grouped[row.message_id].append(_row_to_output(row))
    return dict(grouped)


# =============================================================================
# Updates and deletes
# =============================================================================


def update_tool_call(db: Session, id: str, conversation_id: str, tool_name: str, arguments: Any) -> bool:
    with transaction(db):
        result = db.execute(
            text("""
                UPDATE tool_calls
                SET tool_name = :tool_name, arguments = :arguments
                WHERE id = :id AND conversation_id = :conversation_id
            """),
            {"id": id, "conversation_id": conversation_id, "tool_name": tool_name, "arguments": _to_text(arguments)},
        )
    return result.rowcount > 0


def update_tool_output(db: Session, id: int, output: Any, status: str) -> bool:
    with transaction(db):
        result = db.execute(
            text("UPDATE tool_outputs SET output = :output, status = :status WHERE id = :id"),
            {"id": id, "output": _to_text(output), "status": status},
        )
    return result.rowcount > 0


def _delete_tool_artifacts(db: Session, message_id: int) -> ArtifactDeleteResult:
    outputs = db.execute(
        text("DELETE FROM tool_outputs WHERE message_id = :message_id"), {"message_id": message_id}
    )
    calls = db.execute(
        text("DELETE FROM tool_calls WHERE message_id = :message_id"), {"message_id": message_id}
    )
    return ArtifactDeleteResult(tool_calls_deleted=calls.rowcount, tool_outputs_deleted=outputs.rowcount)


def delete_tool_artifacts_by_message_id(db: Session, message_id: int) -> ArtifactDeleteResult:
    """Delete a message's tool calls and outputs without touching the message."""
    with transaction(db):
        return _delete_tool_artifacts(db, message_id)


def replace_assistant_artifacts(
    db: Session,
    message_id: int,
    conversation_id: str,
    tool_calls: list[Mapping[str, Any]] | None = None,
    tool_outputs: list[Mapping[str, Any]] | None = None,
) -> None:
    """Clear and re-insert a message's tool calls and outputs in one transaction."""
    with transaction(db):
        _delete_tool_artifacts(db, message_id)
        if tool_calls:
            _insert_tool_calls(db, message_id, conversation_id, tool_calls)
        if tool_outputs:
            _insert_tool_outputs(db, message_id, conversation_id, tool_outputs)
