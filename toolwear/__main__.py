"""Run the tool wear tracker with ``python -m toolwear``."""

from __future__ import annotations

import uvicorn

from .config import Settings, configure_logging
from .web.app import create_app


def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":  # pragma: no cover - manual execution
    main()
