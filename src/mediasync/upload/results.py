"""Tagged results for remote catalog operations.

Mutations report rejections inside the payload (``userErrors``) rather than
as transport failures. Client methods return ``Ok(data)`` or
``Err(messages)`` so callers decide what a rejection means.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful remote operation."""

    data: T


@dataclass(frozen=True)
class Err:
    """Remote operation rejected with one or more messages."""

    messages: tuple[str, ...]

    @classmethod
    def of(cls, *messages: str) -> Err:
        return cls(tuple(messages))


Result = Union[Ok[T], Err]
