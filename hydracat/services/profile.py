"""Active owner / pet selection consumed by the write path."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol


@dataclass(frozen=True)
class ActiveProfile:
    user_id: str
    pet_id: str


class ProfileProvider(Protocol):
    def current(self) -> Optional[ActiveProfile]: ...


class ActiveProfileHolder:
    """In-process holder for the currently selected owner and pet."""

    def __init__(self, profile: Optional[ActiveProfile] = None) -> None:
        self._profile = profile

    def current(self) -> Optional[ActiveProfile]:
        return self._profile

    def select(self, user_id: str, pet_id: str) -> None:
        self._profile = ActiveProfile(user_id, pet_id)

    def clear(self) -> None:
        self._profile = None
