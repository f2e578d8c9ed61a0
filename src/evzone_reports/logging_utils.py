import logging

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(debug: bool = False) -> None:
    """Configure logging for the report service and CLI.

    Connection-pool chatter from ``urllib3`` is only shown when debugging.
    """
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("urllib3").setLevel(logging.DEBUG if debug else logging.WARNING)
