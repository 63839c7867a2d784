from abcmove.config import EngineConfig, load_config
from abcmove.engine import get_estimate
from abcmove.interfaces import SummarySelection, build_selection

__version__ = "0.1.0"

__all__ = [
    "EngineConfig",
    "load_config",
    "get_estimate",
    "SummarySelection",
    "build_selection",
]
