"""Create (or recreate) the checkpoint tables in DATABASE_URL."""

from __future__ import annotations

import argparse
import asyncio

from keyword_pipeline.config import settings
from keyword_pipeline.core.database import create_engine_for_url, drop_db, init_db


async def _init_schema(reset: bool) -> None:
    engine = create_engine_for_url(settings.database_url)
    try:
        if reset:
            await drop_db(engine)
        await init_db(engine)
    finally:
        await engine.dispose()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--reset", action="store_true", help="Drop existing tables first")
    args = parser.parse_args(argv)

    asyncio.run(_init_schema(args.reset))
    print("Checkpoint tables ready")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
