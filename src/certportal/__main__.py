from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler

import uvicorn
from dotenv import load_dotenv

from certportal.app import create_app
from certportal.config import load_portal_config
from certportal.home import ensure_portal_layout, resolve_portal_home


def main() -> None:
    load_dotenv()

    home = resolve_portal_home()
    paths = ensure_portal_layout(home)
    config = load_portal_config()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            RotatingFileHandler(
                paths.log_file,
                maxBytes=config.logging.max_size_mb * 1024 * 1024,
                backupCount=config.logging.backup_count,
                encoding="utf-8",
            ),
            logging.StreamHandler(),
        ],
    )

    # Fail at startup rather than on the first proxied request.
    config.upstream.require_api_url()

    uvicorn.run(
        create_app(config, paths=paths),
        host=config.network.bind_host,
        port=config.network.port,
    )


if __name__ == "__main__":
    main()
