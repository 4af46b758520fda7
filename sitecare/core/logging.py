import logging
import os
from typing import Optional


def configure_logging(level: Optional[str] = None) -> None:
    """Configure logging defaults for the application."""
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    # The Stripe SDK logs every request at INFO, including customer ids.
    logging.getLogger("stripe").setLevel(max(logging.WARNING, logging.getLevelName(level)))
