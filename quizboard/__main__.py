"""Run the API with uvicorn: ``python -m quizboard``."""

from __future__ import annotations

import logging

import uvicorn

from quizboard.app import create_app
from quizboard.config import get_settings


def main() -> None:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())
    uvicorn.run(create_app(settings), host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
