"""Desktop shell control adapter for sway/i3.

Minimized means "in the scratchpad" on sway/i3.
"""

BUS_NAME = "org.chatdock.ShellHelper"
OBJECT_PATH = "/org/chatdock/ShellHelper"
INTERFACE = "org.chatdock.ShellHelper"
