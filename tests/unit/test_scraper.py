"""Tests for unread-conversation detection on list snapshots."""

from chatdock.agent.scraper import (
    STARTUP_GRACE,
    UNREAD_MARKER,
    ConversationEntry,
    UnreadScanner,
    build_candidate,
    extract_icon,
    extract_preview,
    extract_sender,
)

CDN = "fbcdn.net"


def _unread(href="/messages/t/100/", sender="Ann Lee", preview="See you at 6"):
    return ConversationEntry(
        href=href,
        texts=[sender, UNREAD_MARKER, preview, "3m"],
        leaf_texts=["·", "3m", sender, preview],
        images=["https://static.example.com/icon.png", f"https://scontent.{CDN}/ann.jpg"],
    )


def _read(href="/messages/t/100/"):
    return ConversationEntry(href=href, texts=["Ann Lee", "ok"], leaf_texts=["Ann Lee", "ok"])


class TestExtraction:
    def test_from_dict_accepts_page_keys(self):
        entry = ConversationEntry.from_dict({
            "href": "/messages/t/1/",
            "texts": [" Bob ", UNREAD_MARKER],
            "leafTexts": ["Bob"],
            "images": [],
        })
        assert entry.texts == ["Bob", UNREAD_MARKER]
        assert entry.leaf_texts == ["Bob"]
        assert entry.unread

    def test_sender_skips_timestamps_and_separators(self):
        assert extract_sender(_unread()) == "Ann Lee"

    def test_sender_rejects_marker_and_single_chars(self):
        entry = ConversationEntry(href="/x", leaf_texts=["A", UNREAD_MARKER, "12h"])
        assert extract_sender(entry) == ""

    def test_preview_follows_marker(self):
        assert extract_preview(_unread(), "Ann Lee") == "See you at 6"

    def test_preview_skips_sender_repeat(self):
        entry = ConversationEntry(href="/x", texts=[UNREAD_MARKER, "Ann", "Hello"])
        assert extract_preview(entry, "Ann") == "Hello"

    def test_icon_from_cdn_only(self):
        assert extract_icon(_unread(), CDN) == f"https://scontent.{CDN}/ann.jpg"
        assert extract_icon(_unread(), None) == ""

    def test_candidate_dropped_without_text(self):
        entry = ConversationEntry(href="/x", texts=[UNREAD_MARKER], leaf_texts=["·"])
        assert build_candidate(entry, CDN) is None

    def test_candidate_fields(self):
        candidate = build_candidate(_unread(), CDN)
        assert candidate.sender == "Ann Lee"
        assert candidate.body == "See you at 6"
        assert candidate.href == "/messages/t/100/"


class TestUnreadScanner:
    def test_notifies_once_until_seen_read(self, messenger_session, clock):
        scanner = UnreadScanner(messenger_session)
        clock.advance(STARTUP_GRACE + 1)

        assert len(scanner.scan([_unread()])) == 1
        assert scanner.scan([_unread()]) == []
        assert scanner.scan([_unread()]) == []

        assert scanner.scan([_read()]) == []
        assert "/messages/t/100/" not in scanner.notified

        assert len(scanner.scan([_unread()])) == 1

    def test_disappearing_entry_is_evicted(self, messenger_session, clock):
        scanner = UnreadScanner(messenger_session)
        clock.advance(STARTUP_GRACE + 1)
        scanner.scan([_unread()])
        scanner.scan([])
        assert scanner.notified == set()

    def test_grace_period_records_without_notifying(self, messenger_session, clock):
        scanner = UnreadScanner(messenger_session)

        assert scanner.scan([_unread()]) == []
        assert scanner.scan([_unread()]) == []
        assert "/messages/t/100/" in scanner.notified

        clock.advance(STARTUP_GRACE)
        # Still the same unread reference: already recorded.
        assert scanner.scan([_unread()]) == []
        # A conversation first seen unread after the grace period notifies.
        assert len(scanner.scan([_unread(), _unread(href="/messages/t/200/", sender="Bo Kim")])) == 1

    def test_entries_without_href_ignored(self, messenger_session, clock):
        scanner = UnreadScanner(messenger_session)
        clock.advance(STARTUP_GRACE + 1)
        assert scanner.scan([_unread(href="")]) == []
        assert scanner.notified == set()
