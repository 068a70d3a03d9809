import logging
import os
import sys
import threading

import uvicorn

from app.core.config import settings
from app.core.observability import log_event, setup_observability

logger = logging.getLogger("productivity.server")


def _fatal(kind: str, exc_type, exc_value) -> None:
    log_event(
        logger,
        logging.CRITICAL,
        "fatal_error",
        kind=kind,
        type=getattr(exc_type, "__name__", str(exc_type)),
        error=str(exc_value),
    )
    logging.shutdown()
    os._exit(1)


def install_fatal_handlers() -> None:
    """Log and exit on exceptions that no handler caught."""
    sys.excepthook = lambda exc_type, exc_value, _tb: _fatal("uncaught_exception", exc_type, exc_value)
    threading.excepthook = lambda args: _fatal("thread_exception", args.exc_type, args.exc_value)


def main() -> None:
    setup_observability(settings.log_level)
    install_fatal_handlers()
    log_event(
        logger,
        logging.INFO,
        "server_starting",
        host=settings.host,
        port=settings.port,
        workers=settings.web_concurrency,
        environment=settings.env,
    )
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        workers=settings.web_concurrency,
        log_level=settings.log_level.lower(),
        proxy_headers=True,
        timeout_graceful_shutdown=30,
    )


if __name__ == "__main__":
    main()
