import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s — %(message)s"

_configured = False


def configure_logging(level: str = "INFO") -> None:
    """Install the root handler once. Library modules only call getLogger."""
    global _configured
    root = logging.getLogger()
    root.setLevel(level.upper())
    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)

    # web3/httpx are chatty at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("web3").setLevel(logging.WARNING)
    _configured = True


def short_hash(value: str, length: int = 18) -> str:
    """Truncate a digest for log lines."""
    if not value:
        return "∅"
    return value if len(value) <= length else f"{value[:length]}..."
