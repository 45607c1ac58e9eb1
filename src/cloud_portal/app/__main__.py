"""Run the portal API with uvicorn: ``python -m cloud_portal.app``."""

from __future__ import annotations

import os

import uvicorn

from ..observability import configure_logging
from .main import create_app
from .settings import PortalSettings


def main() -> None:
    settings = PortalSettings.from_env()
    configure_logging(
        level=settings.log_level,
        json_output=settings.log_format == "json",
    )
    uvicorn.run(
        create_app(settings),
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
        log_config=None,
    )


if __name__ == "__main__":
    main()
