#!/usr/bin/env python3
"""Entry-point for the tunerproxy gateway."""

import logging

import uvicorn

from tunerproxy.config import settings

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
)


def main():
    uvicorn.run(
        "tunerproxy.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level="info",
    )


if __name__ == "__main__":
    main()
