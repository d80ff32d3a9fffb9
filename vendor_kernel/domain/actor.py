"""
Actor identity value object.

The core never resolves identities: an actor id arrives from the caller's
auth context as an opaque string and is only ever compared for exact
equality.  Wrapping it keeps "user-1" and "User-1 " from being silently
treated as the same approver by a helpful normalisation somewhere else.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, order=True)
class ActorId:
    """Opaque, hashable actor key.  Equality is exact string equality."""

    value: str

    def __post_init__(self) -> None:
        if not isinstance(self.value, str) or not self.value:
            raise ValueError("ActorId requires a non-empty string")

    @classmethod
    def of(cls, raw: Any) -> ActorId:
        """Coerce a caller-supplied identity (ActorId, str, UUID) to ActorId."""
        if isinstance(raw, ActorId):
            return raw
        if raw is None:
            raise ValueError("ActorId requires a value")
        return cls(str(raw))

    def __str__(self) -> str:
        return self.value

