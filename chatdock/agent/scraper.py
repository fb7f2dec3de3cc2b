"""Unread-conversation detection on a snapshot of the conversation list.

The page hook serializes every conversation link into a
``ConversationEntry``; ``UnreadScanner.scan`` turns a list of entries into
``DomNotification`` candidates without touching a live document.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from ..protocol import DomNotification

logger = logging.getLogger(__name__)

UNREAD_MARKER = "Unread message:"
STARTUP_GRACE = 15.0
SCAN_DEBOUNCE = 0.5

_TIMESTAMP_RE = re.compile(r"^\d+[hms]$")
_SEPARATOR = "·"


@dataclass(frozen=True)
class ConversationEntry:
    """One conversation link in document order.

    Attributes:
        href: Link target, the conversation reference
        texts: Trimmed text nodes inside the link, in document order
        leaf_texts: Trimmed text of spans with no nested span, in document order
        images: Image sources inside the link
    """

    href: str
    texts: List[str] = field(default_factory=list)
    leaf_texts: List[str] = field(default_factory=list)
    images: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationEntry":
        return cls(
            href=str(data.get("href") or ""),
            texts=[str(t).strip() for t in data.get("texts") or []],
            leaf_texts=[str(t).strip() for t in data.get("leafTexts") or data.get("leaf_texts") or []],
            images=[str(s) for s in data.get("images") or []],
        )

    @property
    def unread(self) -> bool:
        return UNREAD_MARKER in self.texts


def _is_sender_text(text: str) -> bool:
    return (
        1 < len(text) < 100
        and text != UNREAD_MARKER
        and not _TIMESTAMP_RE.match(text)
        and text != _SEPARATOR
    )


def extract_sender(entry: ConversationEntry) -> str:
    """First leaf text that looks like a name rather than UI chrome."""
    for text in entry.leaf_texts:
        if text and _is_sender_text(text):
            return text
    return ""


def extract_preview(entry: ConversationEntry, sender: str) -> str:
    """First text after the unread marker that is not the sender."""
    found_marker = False
    for text in entry.texts:
        if found_marker and text and text != sender and len(text) > 1:
            return text
        if text == UNREAD_MARKER:
            found_marker = True
    return ""


def extract_icon(entry: ConversationEntry, image_cdn: Optional[str]) -> str:
    if not image_cdn:
        return ""
    for src in entry.images:
        if image_cdn in src:
            return src
    return ""


def build_candidate(entry: ConversationEntry, image_cdn: Optional[str]) -> Optional[DomNotification]:
    """Notification candidate for an unread entry; None when nothing is readable."""
    sender = extract_sender(entry)
    preview = extract_preview(entry, sender)
    if not sender and not preview:
        return None
    return DomNotification(
        sender=sender,
        body=preview,
        icon=extract_icon(entry, image_cdn),
        href=entry.href,
    )


class UnreadScanner:
    """Tracks which conversations are unread-and-notified (the dedup set).

    A reference stays in the set while the list keeps reporting it unread
    and is evicted on the first scan where it is not, so a later unread
    notifies again. References first seen unread during the startup grace
    period are recorded without notifying: the list re-renders several
    times while loading and would otherwise look like a burst of new
    messages.
    """

    def __init__(self, session, grace: float = STARTUP_GRACE):
        self.session = session
        self.grace = grace
        self.notified: Set[str] = set()

    def in_grace_period(self) -> bool:
        return self.session.elapsed() < self.grace

    def scan(self, entries: Iterable[ConversationEntry]) -> List[DomNotification]:
        candidates: List[DomNotification] = []
        currently_unread: Set[str] = set()
        in_grace = self.in_grace_period()

        for entry in entries:
            if not entry.href or not entry.unread:
                continue
            currently_unread.add(entry.href)

            if entry.href in self.notified:
                continue
            self.notified.add(entry.href)

            if in_grace:
                continue

            candidate = build_candidate(entry, self.session.service.image_cdn)
            if candidate is None:
                logger.debug(f"Dropping unreadable conversation entry {entry.href}")
                continue
            candidates.append(candidate)

        evicted = self.notified - currently_unread
        if evicted:
            logger.debug(f"Evicting {len(evicted)} conversation(s) no longer unread")
        self.notified &= currently_unread
        return candidates
