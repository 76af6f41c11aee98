"""Write-once lookup tables and identifier sequences.

Per-run tables (identity map, decharge annotations, charge assignments) are
filled once per key and read-only afterwards. A second write to an existing
key is a defect and raises DuplicateAssignmentError.
"""

from typing import Dict, Generic, Hashable, Iterator, Mapping, TypeVar

from .exceptions import DuplicateAssignmentError

K = TypeVar('K', bound=Hashable)
V = TypeVar('V')


class WriteOnceTable(Mapping[K, V], Generic[K, V]):
    """Mapping that accepts exactly one assignment per key.

    Examples
    --------
    >>> table = WriteOnceTable("charges")
    >>> table[("1", 1)] = 2
    >>> table[("1", 1)] = 3
    Traceback (most recent call last):
    ...
    DuplicateAssignmentError: charges: key ('1', 1) is already assigned
    """

    def __init__(self, name: str):
        self.name = name
        self._data: Dict[K, V] = {}

    def __setitem__(self, key: K, value: V) -> None:
        if key in self._data:
            raise DuplicateAssignmentError(self.name, key)
        self._data[key] = value

    def __getitem__(self, key: K) -> V:
        return self._data[key]

    def __iter__(self) -> Iterator[K]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"WriteOnceTable({self.name!r}, {len(self._data)} entries)"


class IdSequence:
    """Hands out consecutive integer ids, starting at 1."""

    def __init__(self, start: int = 1):
        self._next = start

    def next_id(self) -> int:
        value = self._next
        self._next += 1
        return value
