"""OS interface module - platform-specific implementations

Since we build separate executables for each platform,
import the appropriate implementation directly in the entry points:
- entrypoints/nightcap_linux.py imports from os_interfaces.linux
- entrypoints/nightcap_android.py imports from os_interfaces.android
"""

from .base import WAKE_ACTION, HostSurface, OSImplementations, TimerDriver

__all__ = [
  "WAKE_ACTION",
  "HostSurface",
  "OSImplementations",
  "TimerDriver",
]
