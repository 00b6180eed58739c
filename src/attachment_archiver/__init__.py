"""Archive Gmail attachments from labelled messages into Google Drive."""

from .config import Settings
from .context import ArchiverContext
from .orchestrator import Orchestrator

__all__ = ["ArchiverContext", "Orchestrator", "Settings"]
