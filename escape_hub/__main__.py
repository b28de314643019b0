"""Run the escape hub API server."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

from escape_hub.api_app import create_app
from escape_hub.settings import configure_logging, load_settings

LOGGER = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Serve the team escape-room API.")
    parser.add_argument("--settings", type=Path, help="Path to the settings YAML file.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=5000)
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args(argv)

    settings = load_settings(args.settings)
    configure_logging(settings.log_level)
    LOGGER.info("Loading room catalog from %s", settings.catalog_path)
    app = create_app(settings)
    app.run(host=args.host, port=args.port, debug=args.debug)


if __name__ == "__main__":
    main()
