"""Per-invocation wiring."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import requests

from .config import Settings


@dataclass
class ArchiverContext:
    """Everything one invocation shares: settings, logger and HTTP session.

    Built once by the caller and handed to every component constructor.
    """

    settings: Settings
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("attachment_archiver"))
    session: requests.Session = field(default_factory=requests.Session)

    def child_logger(self, name: str) -> logging.Logger:
        return self.logger.getChild(name)

    def close(self) -> None:
        self.session.close()
