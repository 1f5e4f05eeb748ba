# log.py: process-wide logging setup for the CLI and the Flask app
import logging

FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level="INFO"):
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=FORMAT)
    logging.getLogger("docfill").setLevel(level)
    return logging.getLogger("docfill")
