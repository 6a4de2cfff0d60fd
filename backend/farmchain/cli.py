"""Management CLI.

Usage:
    python -m farmchain.cli create-tables     # Create all tables (dev / tests; use Alembic in prod)
    python -m farmchain.cli dispatch-outbox   # Deliver pending listing/notification events once
"""

import asyncio
import sys

from farmchain.database import Base, engine
from farmchain.models import *  # noqa: F401,F403
from farmchain.services.lifecycle import get_engine


async def create_tables():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print(f"  Created {len(Base.metadata.tables)} tables")


async def dispatch_outbox():
    dispatcher = get_engine().dispatcher
    delivered = await dispatcher.dispatch_pending(limit=1000)
    print(f"  Delivered {delivered} event(s)")


if __name__ == "__main__":
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    if cmd == "create-tables":
        asyncio.run(create_tables())
    elif cmd == "dispatch-outbox":
        asyncio.run(dispatch_outbox())
    else:
        print(__doc__)
        sys.exit(1)
