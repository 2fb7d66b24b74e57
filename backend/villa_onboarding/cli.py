"""Management CLI for onboarding progress data.

Usage:
    python -m villa_onboarding.cli init-db          # Create tables (local dev only)
    python -m villa_onboarding.cli purge-sessions   # Drop closed sessions past retention
    python -m villa_onboarding.cli purge-sessions 90
"""

import asyncio
import sys
from datetime import timedelta

from villa_onboarding.config import settings
from villa_onboarding.database import init_db, run_in_transaction, utcnow
from villa_onboarding.services import session_tracker


async def purge_sessions(retention_days: int | None = None) -> int:
    """Delete closed sessions that ended more than `retention_days` ago."""
    days = retention_days if retention_days is not None else settings.session_retention_days
    cutoff = utcnow() - timedelta(days=days)

    async def work(db):
        return await session_tracker.purge_sessions(db, cutoff)

    return await run_in_transaction(work)


def main(argv: list[str]) -> int:
    cmd = argv[1] if len(argv) > 1 else ""
    if cmd == "init-db":
        asyncio.run(init_db())
        print("Tables created.")
    elif cmd == "purge-sessions":
        days = int(argv[2]) if len(argv) > 2 else None
        count = asyncio.run(purge_sessions(days))
        print(f"Purged {count} session(s).")
    else:
        print("Usage: python -m villa_onboarding.cli [init-db|purge-sessions [days]]")
        return 1
    return 0


def run() -> None:
    sys.exit(main(sys.argv))


if __name__ == "__main__":
    run()
