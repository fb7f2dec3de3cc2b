"""chatdock

Desktop presence for browser-hosted messaging web apps.

This package provides three cooperating processes:
- daemon: per-service authority for visibility intent, unread badge and DND
- agent: attaches to the browser over the DevTools protocol and owns the window
- shell-helper: session bus service that focuses/hides windows on sway/i3

Author: NixOS Configuration
License: MIT
Version: 1.0.0
"""

__version__ = "1.0.0"
