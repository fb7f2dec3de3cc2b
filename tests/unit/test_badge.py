"""Tests for unread badge extraction."""

from chatdock.agent.badge import BadgeTracker, extract_badge_count
from chatdock.services import MESSENGER, WHATSAPP


class TestExtractBadgeCount:
    def test_whatsapp_prefix(self):
        assert extract_badge_count(WHATSAPP.badge_pattern, "(3) WhatsApp") == 3
        assert extract_badge_count(WHATSAPP.badge_pattern, "(120) WhatsApp") == 120

    def test_whatsapp_without_count(self):
        assert extract_badge_count(WHATSAPP.badge_pattern, "WhatsApp") == 0

    def test_whatsapp_count_must_lead(self):
        assert extract_badge_count(WHATSAPP.badge_pattern, "WhatsApp (3)") == 0

    def test_messenger_anywhere(self):
        assert extract_badge_count(MESSENGER.badge_pattern, "Messenger (2)") == 2
        assert extract_badge_count(MESSENGER.badge_pattern, "(5) Facebook") == 5

    def test_empty_title(self):
        assert extract_badge_count(WHATSAPP.badge_pattern, None) == 0
        assert extract_badge_count(WHATSAPP.badge_pattern, "") == 0


class TestBadgeTracker:
    def test_emits_once_per_change(self):
        """"WhatsApp" -> "(3) WhatsApp" reports 3 once; a repeat title reports nothing."""
        tracker = BadgeTracker(WHATSAPP.badge_pattern)

        assert tracker.update("WhatsApp") is None
        assert tracker.update("(3) WhatsApp") == 3
        assert tracker.update("(3) WhatsApp") is None
        assert tracker.update("WhatsApp") == 0
        assert tracker.last_count == 0

    def test_reset_resends_current_count(self):
        tracker = BadgeTracker(WHATSAPP.badge_pattern)
        tracker.update("(4) WhatsApp")
        tracker.reset()
        assert tracker.update("(4) WhatsApp") == 4

    def test_reset_reports_zero(self):
        """After a reconnect a cleared badge is still sent."""
        tracker = BadgeTracker(WHATSAPP.badge_pattern)
        assert tracker.update("(5) WhatsApp") == 5
        tracker.reset()
        assert tracker.update("WhatsApp") == 0
        assert tracker.update("WhatsApp") is None
