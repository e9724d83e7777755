#!/usr/bin/env python3
"""Run the HTTP API."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import uvicorn

from cnpj_enricher.api.app import app
from cnpj_enricher.config.settings import settings


if __name__ == "__main__":
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
