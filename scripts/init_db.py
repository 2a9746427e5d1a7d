#!/usr/bin/env python3
"""Bring the leadflow schema up to date and report the workflow inbox.

Usage:
    python scripts/init_db.py           # alembic upgrade head
    python scripts/init_db.py --dev     # create tables straight from the models
"""

import argparse
import asyncio
import sys

# Add src to path
sys.path.insert(0, "src")

import alembic.command
import alembic.config
from sqlalchemy.engine import make_url

from leadflow.config import settings
from leadflow.db.session import AsyncSessionLocal, close_db, init_db
from leadflow.workflow.service import WorkflowService


def upgrade_schema() -> None:
    alembic.command.upgrade(alembic.config.Config("alembic.ini"), "head")


async def main() -> int:
    parser = argparse.ArgumentParser(description="Prepare the leadflow database")
    parser.add_argument("--dev", action="store_true", help="Create tables from models, skip migrations")
    args = parser.parse_args()

    print(f"Database URL: {make_url(settings.database_url).render_as_string(hide_password=True)}")

    try:
        if args.dev:
            await init_db()
            print("✓ Tables created from models")
        else:
            # env.py runs its own event loop.
            await asyncio.to_thread(upgrade_schema)
            print("✓ Migrated to head")

        summary = await WorkflowService(AsyncSessionLocal).flag_summary()
        for flag, count in summary.items():
            print(f"  {flag:<24} {count}")
        return 0

    except Exception as e:
        print(f"❌ Error: {e}")
        return 1

    finally:
        await close_db()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
