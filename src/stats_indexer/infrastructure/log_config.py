from __future__ import annotations
import logging
from stats_indexer.config import get_settings

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Apply LOG_LEVEL to the root logger once per process."""
    level_name = (level or get_settings().log_level or "INFO").upper()
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level_name, format=_FORMAT)
    root.setLevel(level_name)
