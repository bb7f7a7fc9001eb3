"""
Tender markup bootstrap.

Hosts (live preview, save-time recalculation, verification jobs) call
``bootstrap()`` once at startup and share the returned engine.
"""
import logging
from typing import Optional

from tender import config
from tender.services.logging_config import setup_logging
from tender.services.markup_engine import MarkupEngine

logger = logging.getLogger("tender-markup")


def bootstrap(level: Optional[str] = None, json_output: Optional[bool] = None) -> MarkupEngine:
    """Configure logging from the environment and return the markup engine."""
    setup_logging(
        level=level or config.LOG_LEVEL,
        json_output=config.JSON_LOGS if json_output is None else json_output,
        perf_level=config.PERF_LOG_LEVEL,
    )
    logger.info("Markup engine ready")
    return MarkupEngine()
