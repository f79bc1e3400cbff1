"""Recipient allow-list — decides which senders a channel will accept."""

from __future__ import annotations

from collections.abc import Iterable, Iterator

WILDCARD = "*"


class AllowList:
    """Set of sender identifiers permitted through a channel.

    An entry equal to :data:`WILDCARD` admits every identifier and wins
    over any other entries.  Otherwise membership is exact and
    case-sensitive: no prefix, suffix or substring matching.  An empty
    allow-list admits nobody.
    """

    def __init__(self, identifiers: Iterable[str] = ()) -> None:
        # dict keeps configured order for display while deduplicating
        self._entries: dict[str, None] = dict.fromkeys(identifiers)
        self._allow_all = WILDCARD in self._entries

    def is_allowed(self, identifier: str) -> bool:
        """Return ``True`` if messages from *identifier* may be processed."""
        if self._allow_all:
            return True
        return identifier in self._entries

    @property
    def allows_all(self) -> bool:
        """Return ``True`` when the wildcard sentinel is configured."""
        return self._allow_all

    def __contains__(self, identifier: object) -> bool:
        return isinstance(identifier, str) and self.is_allowed(identifier)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"AllowList({list(self._entries)!r})"
