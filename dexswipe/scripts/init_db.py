"""Create the DexSwipe tables in the configured database."""

from __future__ import annotations

import asyncio

from dexswipe.middlewares.db import init_db


def main() -> None:
    asyncio.run(init_db())


if __name__ == "__main__":
    main()
