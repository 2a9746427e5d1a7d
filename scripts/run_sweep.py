#!/usr/bin/env python3
"""Run one escalation sweep and exit (cron / manual operations).

Usage:
    python scripts/run_sweep.py                 # Sweep all active leads
    python scripts/run_sweep.py --timeout 60    # Per-lead timeout in seconds
    python scripts/run_sweep.py --json          # Print counters as JSON
"""

import argparse
import asyncio
import json
import sys

# Add src to path
sys.path.insert(0, "src")

import structlog

from leadflow.config import settings
from leadflow.db.session import AsyncSessionLocal, close_db
from leadflow.observability.log_config import configure_logging
from leadflow.workflow.classifier import get_classifier
from leadflow.workflow.service import WorkflowService

logger = structlog.get_logger()


async def main() -> int:
    parser = argparse.ArgumentParser(description="Run one leadflow escalation sweep")
    parser.add_argument("--timeout", type=float, default=None, help="Per-lead timeout (seconds)")
    parser.add_argument("--json", action="store_true", help="Print the counters as JSON")
    args = parser.parse_args()

    configure_logging(settings.log_level, settings.env)
    service = WorkflowService(AsyncSessionLocal, classifier=get_classifier())

    try:
        result = await service.run_escalation_sweep(lead_timeout_s=args.timeout)
    except Exception as e:
        logger.error("escalation_sweep_aborted", error=str(e), exc_info=True)
        return 1
    finally:
        await close_db()

    if args.json:
        print(json.dumps(result.to_dict()))
    else:
        print(
            f"processed={result.processed} escalated={result.escalated} "
            f"reminded={result.reminded} errors={result.errors}"
        )
    return 1 if result.errors else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
