from __future__ import annotations

import asyncio

from autobid.db.session import dispose_database, ping_database


async def check() -> int:
    try:
        await ping_database()
        await dispose_database()
        return 0
    except Exception:
        return 1


def main() -> None:
    raise SystemExit(asyncio.run(check()))


if __name__ == "__main__":
    main()
