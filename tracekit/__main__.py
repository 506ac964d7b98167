"""Serve the local control API: ``python -m tracekit``.

Host and port come from ``TRACE_API_HOST`` / ``TRACE_API_PORT``.
"""

from __future__ import annotations

import logging

import uvicorn

from tracekit.config import get_settings

logger = logging.getLogger("tracekit")


def main() -> None:
    settings = get_settings()
    # Importing main configures logging and builds the app.
    from tracekit.main import app

    logger.info("Serving control API on %s:%d", settings.api_host, settings.api_port)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
