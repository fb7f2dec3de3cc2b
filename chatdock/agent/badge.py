"""Unread badge extraction from document titles."""

import logging
from typing import Optional, Pattern

logger = logging.getLogger(__name__)

BADGE_INTERVAL = 2.0


def extract_badge_count(pattern: Pattern, title: Optional[str]) -> int:
    """Unread count encoded in ``title``; 0 when the pattern does not match.

    Examples (WhatsApp, leading prefix):
        "(3) WhatsApp"  -> 3
        "WhatsApp"      -> 0
    """
    if not title:
        return 0
    match = pattern.search(title)
    if not match:
        return 0
    return int(match.group(1))


class BadgeTracker:
    """Reports the badge count only when it changes."""

    def __init__(self, pattern: Pattern):
        self.pattern = pattern
        self.last_count: Optional[int] = 0

    def update(self, title: Optional[str]) -> Optional[int]:
        """Evaluate ``title``; returns the new count on change, else None."""
        count = extract_badge_count(self.pattern, title)
        if count == self.last_count:
            return None
        logger.debug(f"Badge count {self.last_count} -> {count}")
        self.last_count = count
        return count

    def reset(self) -> None:
        """Forget the reported count so the next evaluation is always sent.

        A fresh daemon may still hold a count from before the disconnect,
        so a zero must be reported too.
        """
        self.last_count = None
