"""Catalog of supported messaging services."""

import re
from dataclasses import dataclass
from typing import Dict, Optional, Pattern, Tuple

from .errors import UnknownServiceError


@dataclass(frozen=True)
class ServiceDefinition:
    """Static description of one messaging web app.

    Attributes:
        name: Service identifier used in sockets, config files and messages
        display_name: Human readable name
        url: Canonical URL a new window is seeded with
        url_prefixes: Page URL prefixes that identify the service's tab
        wm_class: Window-manager class of the browser's app window
        badge_pattern: Regex on the document title; group 1 is the unread count
        scrape_unread: Whether the conversation list is scraped for unread entries
        conversation_base_url: Prefix for full navigation to a conversation href
        image_cdn: Substring identifying avatar images in the conversation list
    """

    name: str
    display_name: str
    url: str
    url_prefixes: Tuple[str, ...]
    wm_class: str
    badge_pattern: Pattern
    scrape_unread: bool = False
    conversation_base_url: Optional[str] = None
    image_cdn: Optional[str] = None

    def matches_url(self, url: str) -> bool:
        return any(url.startswith(prefix) for prefix in self.url_prefixes)

    def conversation_url(self, href: str) -> str:
        return f"{self.conversation_base_url or ''}{href}"


WHATSAPP = ServiceDefinition(
    name="whatsapp",
    display_name="WhatsApp",
    url="https://web.whatsapp.com/",
    url_prefixes=("https://web.whatsapp.com",),
    wm_class="chrome-web.whatsapp.com__-Default",
    badge_pattern=re.compile(r"^\((\d+)\)"),
)

MESSENGER = ServiceDefinition(
    name="messenger",
    display_name="Facebook Messenger",
    url="https://facebook.com/messages/",
    url_prefixes=("https://facebook.com/messages", "https://www.facebook.com/messages"),
    wm_class="chrome-facebook.com__messages_-Default",
    badge_pattern=re.compile(r"\((\d+)\)"),
    scrape_unread=True,
    conversation_base_url="https://www.facebook.com",
    image_cdn="fbcdn.net",
)

SERVICES: Dict[str, ServiceDefinition] = {
    WHATSAPP.name: WHATSAPP,
    MESSENGER.name: MESSENGER,
}


def get_service(name: str) -> ServiceDefinition:
    """Look up a service by name.

    Raises:
        UnknownServiceError: If the name is not in the catalog
    """
    try:
        return SERVICES[name]
    except KeyError:
        raise UnknownServiceError(name, sorted(SERVICES)) from None

