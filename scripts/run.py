#!/usr/bin/env python3
"""Run the leadflow HTTP service with uvicorn.

Usage:
    python scripts/run.py                 # Serve on port 8000
    python scripts/run.py --port 3000     # Custom port
    python scripts/run.py --no-scheduler  # Serve the API without the sweep job
"""

import argparse
import os
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import structlog

from leadflow.config import settings
from leadflow.observability.log_config import configure_logging

logger = structlog.get_logger()


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the leadflow service")
    parser.add_argument("--host", default="0.0.0.0", help="Bind address")
    parser.add_argument("--port", type=int, default=8000, help="HTTP port")
    parser.add_argument("--no-scheduler", action="store_true", help="Disable the escalation sweep job")
    args = parser.parse_args()

    if args.no_scheduler:
        # The env var reaches the reloader subprocess; the assignment covers this one.
        os.environ["LEADFLOW_SCHEDULER_ENABLED"] = "false"
        settings.scheduler_enabled = False

    configure_logging(settings.log_level, settings.env)

    import uvicorn

    logger.info(
        "starting_leadflow",
        host=args.host,
        port=args.port,
        scheduler=settings.scheduler_enabled,
    )
    try:
        uvicorn.run(
            "leadflow.app:api",
            host=args.host,
            port=args.port,
            reload=(settings.env == "development"),
        )
        return 0
    except KeyboardInterrupt:
        logger.info("shutting_down", reason="keyboard_interrupt")
        return 0
    except Exception as e:
        logger.error("fatal_error", error=str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
