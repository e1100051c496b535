from __future__ import annotations

import logging
from typing import Mapping

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _level(name: str) -> int:
    return getattr(logging, name.strip().upper(), logging.INFO)


def configure_logging(level: str, component_levels: Mapping[str, str] | None = None) -> None:
    """Root handler at ``level``; ``component_levels`` maps logger names
    (e.g. ``pm_quant.spike_detector``) to their own level."""
    logging.basicConfig(level=_level(level), format=LOG_FORMAT)
    for name, component_level in (component_levels or {}).items():
        logging.getLogger(name).setLevel(_level(component_level))
