"""Command-line launcher for the production quality dashboard API."""

from __future__ import annotations

import logging
import os
from contextlib import suppress

from dotenv import load_dotenv
from werkzeug.serving import make_server

from quality_dashboard import create_app

logger = logging.getLogger(__name__)

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000


def run_server() -> None:
    load_dotenv()
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = create_app()
    host = os.environ.get("HOST") or DEFAULT_HOST
    port = int(os.environ.get("PORT") or DEFAULT_PORT)

    server = make_server(host, port, app, threaded=True)
    logger.info("Serving dashboard API on http://%s:%s", host, port)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down")
    finally:
        with suppress(Exception):
            server.server_close()


if __name__ == "__main__":
    run_server()
