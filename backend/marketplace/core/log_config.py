"""Root logging setup, called once at startup."""
import logging

from marketplace.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(level=(level or settings.LOG_LEVEL).upper(), format=LOG_FORMAT)
    # Audit lines are already JSON; keep them at INFO even when the app is quieter
    logging.getLogger("audit").setLevel(logging.INFO)
