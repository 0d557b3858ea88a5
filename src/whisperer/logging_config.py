"""Logging setup shared by the API server and the CLI."""

import logging

from rich.logging import RichHandler


def configure_logging(level: str = "INFO") -> None:
    """Route all pipeline loggers through a rich console handler."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # SQLAlchemy echo is controlled separately by the engine.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
