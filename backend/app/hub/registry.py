"""Set of symbols currently subscribed upstream, and reconciliation deltas."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from .models import normalize_symbols


@dataclass(frozen=True, slots=True)
class SubscriptionDelta:
    to_subscribe: list[str]
    to_unsubscribe: list[str]

    @property
    def empty(self) -> bool:
        return not self.to_subscribe and not self.to_unsubscribe


class SubscriptionRegistry:
    """The hub's SubscribedSymbolSet.

    Only the upstream feed mutates it, when a subscribe or unsubscribe
    command is actually sent.
    """

    def __init__(self) -> None:
        self._symbols: set[str] = set()

    def add(self, symbols: Iterable[str]) -> None:
        self._symbols.update(symbols)

    def discard(self, symbols: Iterable[str]) -> None:
        self._symbols.difference_update(symbols)

    def diff(self, requested: Iterable[str]) -> SubscriptionDelta:
        """Minimal change that turns the current set into ``requested``.

        ``requested`` is taken as the complete desired set. Symbols not in it
        are unsubscribed even if another client asked for them earlier; there
        is no per-client interest tracking.
        """
        wanted = normalize_symbols(requested)
        wanted_set = set(wanted)
        return SubscriptionDelta(
            to_subscribe=[s for s in wanted if s not in self._symbols],
            to_unsubscribe=sorted(self._symbols - wanted_set),
        )

    def symbols(self) -> list[str]:
        """Sorted copy of the subscribed symbols."""
        return sorted(self._symbols)

    def __contains__(self, symbol: str) -> bool:
        return symbol in self._symbols

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._symbols))

    def __len__(self) -> int:
        return len(self._symbols)
