"""Webhook subscriber registry."""

from __future__ import annotations

from typing import Dict, Iterator, List


class SubscriberRegistry:
    """
    Set of webhook URLs, compared by exact string equality.

    Listing preserves subscription order. Both mutations are idempotent:
    adding a present URL or removing an absent one is a no-op.
    """

    def __init__(self) -> None:
        # dict used as an insertion-ordered set
        self._urls: Dict[str, None] = {}

    def add(self, url: str) -> bool:
        """Add ``url``; return True if it was not already subscribed."""
        if url in self._urls:
            return False
        self._urls[url] = None
        return True

    def remove(self, url: str) -> bool:
        """Remove ``url``; return True if it was subscribed."""
        if url not in self._urls:
            return False
        del self._urls[url]
        return True

    def list(self) -> List[str]:
        return list(self._urls)

    def __contains__(self, url: object) -> bool:
        return url in self._urls

    def __len__(self) -> int:
        return len(self._urls)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._urls))
