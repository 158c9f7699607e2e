"""
Exporter Module Entry Point

Allows execution via: python -m apps.exporter (or the bq-exporter script)

Delegates to scheduler for all execution modes (scheduled and one-shot).
"""

import asyncio
import sys

from apps.exporter.scheduler import main


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
