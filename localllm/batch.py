"""
Token batches submitted to a context in a single decode call.
"""

from dataclasses import dataclass, field
from typing import Iterator, List, Sequence

from .constants import BATCH_CAPACITY
from .errors import InvalidStateError


@dataclass
class BatchEntry:
    """One token of a batch with its absolute position in the sequence."""

    token: int
    pos: int
    seq_ids: Sequence[int] = (0,)
    logits: bool = False


@dataclass
class Batch:
    """
    Bounded, ordered list of tokens for one decode step.

    A batch is scoped to a single decode or generation call. Use it as a
    context manager so it is released on every exit path.
    """

    capacity: int = BATCH_CAPACITY
    entries: List[BatchEntry] = field(default_factory=list)
    freed: bool = False

    def add(self, token: int, pos: int, seq_ids: Sequence[int] = (0,), logits: bool = False) -> None:
        if self.freed:
            raise InvalidStateError("Batch already freed")
        if len(self.entries) >= self.capacity:
            raise InvalidStateError(
                "Batch capacity exceeded",
                details={"capacity": self.capacity},
            )
        self.entries.append(BatchEntry(int(token), int(pos), tuple(seq_ids), bool(logits)))

    def clear(self) -> None:
        self.entries.clear()

    def free(self) -> None:
        self.entries = []
        self.freed = True

    @property
    def n_tokens(self) -> int:
        return len(self.entries)

    @property
    def is_full(self) -> bool:
        return len(self.entries) >= self.capacity

    @property
    def tokens(self) -> List[int]:
        return [e.token for e in self.entries]

    @property
    def positions(self) -> List[int]:
        return [e.pos for e in self.entries]

    @property
    def logit_indices(self) -> List[int]:
        """Indices of the entries that must emit logits."""
        return [i for i, e in enumerate(self.entries) if e.logits]

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[BatchEntry]:
        return iter(self.entries)

    def __enter__(self) -> "Batch":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.free()
