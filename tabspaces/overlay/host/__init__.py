"""Host (browser) tab-model adapters."""

from tabspaces.overlay.host.base import HostLookupError, HostOperationError, TabHost
from tabspaces.overlay.host.memory import InMemoryTabHost

__all__ = ["HostLookupError", "HostOperationError", "InMemoryTabHost", "TabHost"]
