from __future__ import annotations

from enum import Enum

from .util.errors import StateError
from .util.jsonize import jsondict

PartitioningTag = int
"""Type alias for partitioning tags. Tags are signed 64-bit identifiers, *0* means "unknown partitioning"."""

UnknownPartitioning: PartitioningTag = 0
"""The partitioning tag of operators whose physical partitioning cannot be derived from their inputs."""


def tags_match(first: PartitioningTag, second: PartitioningTag) -> bool:
    """Checks, whether two partitioning tags provide evidence that their collections are identically partitioned.

    Only equal tags that are both known (i.e. non-zero) constitute such evidence. Notice that this is a heuristic: two
    collections could be partitioned identically without sharing a tag, and two unrelated tags could collide. The optimizer
    only ever treats a match as actionable evidence and never treats a mismatch as proof of incompatibility.
    """
    return first != UnknownPartitioning and first == second


def is_int_keyed(key_type: type) -> bool:
    """Checks, whether a row key type admits a physical transposition (i.e. it is an integer type)."""
    return issubclass(key_type, int) and not issubclass(key_type, bool)


class NonZeroCount:
    """Non-zero counts describe how many elements of a matrix are different from zero.

    Our model can be in one of two states: a known count is any non-negative integer, whereas an unknown count is used for
    operators whose number of non-zero elements cannot be derived without executing them. Unknown counts are represented by
    the sentinel value *-1*.

    Use `of()` and `unknown()` to construct instances and `is_known()` to check the state. The raw value can be accessed via
    the `value` property, but only if the count is known. `get()` provides the sentinel-aware value instead.

    Non-zero counts can be used in *match* statements with the pattern *(is_known, value)*. If the count is unknown, the value
    is set to -1.
    """

    @staticmethod
    def of(value: int | NonZeroCount) -> NonZeroCount:
        """Creates a new count with a specific value. This is just a shorthand for `NonZeroCount(value)`."""
        if isinstance(value, NonZeroCount):
            return value
        return NonZeroCount(value)

    @staticmethod
    def unknown() -> NonZeroCount:
        """Creates a new count with an unknown value."""
        return NonZeroCount(-1)

    def __init__(self, value: int) -> None:
        if value < -1:
            raise ValueError(f"Non-zero counts must be non-negative (or -1 for unknown counts), not {value}")
        self._known = value >= 0
        self._value = int(value)

    __slots__ = ("_known", "_value")
    __match_args__ = ("_known", "_value")

    @property
    def value(self) -> int:
        """Get the value wrapped by this count. If the count is unknown, a `StateError` is raised."""
        if not self._known:
            raise StateError("Non-zero count is unknown. Use is_known() to check, or get() to handle the sentinel yourself.")
        return self._value

    def is_known(self) -> bool:
        """Checks, whether the number of non-zero elements is known."""
        return self._known

    def get(self) -> int:
        """Provides the value of this count, using *-1* for unknown counts."""
        return self._value

    def __json__(self) -> jsondict:
        return self._value

    def __bool__(self) -> bool:
        return self._known

    def __int__(self) -> int:
        return self._value

    def __eq__(self, other: object) -> bool:
        match other:
            case NonZeroCount():
                return self._value == other._value
            case int():
                return self._value == other
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._value)

    def __repr__(self) -> str:
        return f"NonZeroCount({self._value})"

    def __str__(self) -> str:
        return str(self._value) if self._known else "unknown"


class StorageLevel(Enum):
    """The storage levels that the collection substrate supports for cached (checkpointed) results.

    Each level is described by a tuple *(use disk, use memory, deserialized, replication)*.
    """

    NoStorage = (False, False, False, 1)
    DiskOnly = (True, False, False, 1)
    DiskOnly2 = (True, False, False, 2)
    MemoryOnly = (False, True, True, 1)
    MemoryOnly2 = (False, True, True, 2)
    MemoryOnlySer = (False, True, False, 1)
    MemoryOnlySer2 = (False, True, False, 2)
    MemoryAndDisk = (True, True, True, 1)
    MemoryAndDisk2 = (True, True, True, 2)
    MemoryAndDiskSer = (True, True, False, 1)
    MemoryAndDiskSer2 = (True, True, False, 2)

    @property
    def use_disk(self) -> bool:
        return self.value[0]

    @property
    def use_memory(self) -> bool:
        return self.value[1]

    @property
    def deserialized(self) -> bool:
        return self.value[2]

    @property
    def replication(self) -> int:
        return self.value[3]

    def __json__(self) -> str:
        return self.name


class ElementwiseOp(Enum):
    """Arithmetic operators that combine two distributed matrices cell by cell."""

    Plus = "+"
    Minus = "-"
    Hadamard = "*"
    Divide = "/"

    def __json__(self) -> str:
        return self.value

    def __str__(self) -> str:
        return self.value


class ScalarOp(Enum):
    """Arithmetic operators that combine a distributed matrix with a scalar value.

    The reversed operators put the scalar on the left-hand side, e.g. ``MinusReversed`` computes *s - A*.
    """

    Plus = "+"
    Minus = "-"
    MinusReversed = "-:"
    Times = "*"
    Divide = "/"
    DivideReversed = "/:"

    def __json__(self) -> str:
        return self.value

    def __str__(self) -> str:
        return self.value

