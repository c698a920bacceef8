"""Incremental structural guidance for Python sources."""

from .config import AstGuideConfig, load_config
from .orchestrator import SyncOrchestrator

__version__ = "0.1.0"

__all__ = ["AstGuideConfig", "SyncOrchestrator", "__version__", "load_config"]
