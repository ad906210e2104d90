from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from typing import Any


class ResultRow(Mapping[str, Any]):
    """
    One row returned by a monitored procedure.

    Keys keep the column order of the result set and are looked up
    case-insensitively; a repeated column name overwrites the earlier value in
    place.
    """

    __slots__ = ("_data",)

    def __init__(self, items: Iterable[tuple[str, Any]] = ()) -> None:
        self._data: dict[str, tuple[str, Any]] = {}
        for name, value in items:
            key = str(name).lower()
            original = self._data[key][0] if key in self._data else str(name)
            self._data[key] = (original, value)

    @classmethod
    def from_columns(cls, columns: Sequence[str], values: Sequence[Any]) -> "ResultRow":
        return cls(zip(columns, values))

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "ResultRow":
        return cls(mapping.items())

    def __getitem__(self, key: str) -> Any:
        return self._data[str(key).lower()][1]

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.lower() in self._data

    def __iter__(self) -> Iterator[str]:
        return (name for name, _ in self._data.values())

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        inner = ", ".join(f"{name!r}: {value!r}" for name, value in self._data.values())
        return f"ResultRow({{{inner}}})"
