"""Sparse patch builder for partial UPDATE statements.

Takes a mapping of column -> value where UNSET marks "not provided", and
emits a SET clause covering only the provided columns. Column names are
checked against an allow-list before they reach SQL.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from chatstore.errors import InvalidArgumentError, StoreErrorCode


class _Unset:
    """Sentinel type for "argument not provided" (distinct from None)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass
class SparsePatch:
    """A validated set of column assignments."""

    assignments: list[str] = field(default_factory=list)
    params: dict[str, Any] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return bool(self.assignments)

    def add(self, column: str, value: Any) -> None:
        self.assignments.append(f"{column} = :{column}")
        self.params[column] = value

    def set_clause(self) -> str:
        return ", ".join(self.assignments)


def build_patch(
    values: Mapping[str, Any],
    allowed: Mapping[str, Callable[[Any], Any] | None],
) -> SparsePatch:
    """Build a SparsePatch from the provided values.

    Args:
        values: column -> value; UNSET entries are skipped.
        allowed: column -> optional converter applied to the value before binding.

    Raises:
        InvalidArgumentError(E_INVALID_FIELD): If a provided column is not allowed.
    """
    patch = SparsePatch()
    for column, value in values.items():
        if value is UNSET:
            continue
        if column not in allowed:
            raise InvalidArgumentError(StoreErrorCode.E_INVALID_FIELD, f"Unknown field: {column}")
        converter = allowed[column]
        patch.add(column, converter(value) if converter is not None else value)
    return patch
