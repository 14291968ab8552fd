"""Entrypoint for running the Burnout Pulse API via `python -m burnout_pulse.main`."""

from __future__ import annotations

import logging
import os

import uvicorn

from .api import create_app
from .config import load_settings


def run() -> None:
    env_file = os.getenv("BURNOUT_PULSE_ENV")
    settings = load_settings(env_file)
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = create_app(settings)
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":  # pragma: no cover
    run()
