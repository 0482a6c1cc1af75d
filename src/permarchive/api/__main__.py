# src/permarchive/api/__main__.py
from __future__ import annotations

import uvicorn

from permarchive.env import load_dotenv_if_present


def main() -> None:
    # Load .env early so PERMARCHIVE_* vars exist before anything reads them.
    load_dotenv_if_present()

    # Import after dotenv load (prevents "config read before env" surprises)
    from permarchive.api.app import create_app
    from permarchive.config import load_archive_config
    from permarchive.util.structured_logging import configure_structured_logging

    cfg = load_archive_config()
    configure_structured_logging(cfg.log_level)

    uvicorn.run(create_app(cfg=cfg), host=cfg.api_host, port=int(cfg.api_port), log_level="info")


if __name__ == "__main__":
    main()
