"""Host types without a natural Python counterpart."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator


@dataclass(frozen=True)
class DataApiVector:
    """An embedding vector.

    Kept distinct from ``list[float]`` so the codec can tell a vector column
    from an ordinary list, and so it can accept the packed ``$binary`` form.
    """

    values: tuple[float, ...]

    def __init__(self, values: Iterable[float]):
        object.__setattr__(self, "values", tuple(float(v) for v in values))

    def __iter__(self) -> Iterator[float]:
        return iter(self.values)

    def __len__(self) -> int:
        return len(self.values)

    def __getitem__(self, index: int) -> float:
        return self.values[index]


class RawJson:
    """Decode target that returns the wire value untouched."""


__all__ = ["DataApiVector", "RawJson"]
