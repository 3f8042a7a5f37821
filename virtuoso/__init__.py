"""Recording and replay of XMPP conversations for automated testing."""

from . import config_loader as config_loader
from . import composition as composition

__version__ = "0.1.0"

from .config_loader import load_config as load_config
from .composition.manager import CompositionManager as CompositionManager
from .drivers.loopback import LoopbackProvider as LoopbackProvider

__all__ = [
    "config_loader",
    "composition",
    "load_config",
    "CompositionManager",
    "LoopbackProvider",
]
