"""
Run the recurring billing scheduler.

    python -m workers.run_renewal_scheduler            # every renewal_interval_seconds
    python -m workers.run_renewal_scheduler --once     # single pass, for cron
    python -m workers.run_renewal_scheduler --interval 3600
"""

import argparse
import sys

from common.workers.launcher import WorkerLauncher
from packages.billing.workers.renewal_worker import RenewalWorker


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Recurring billing scheduler")
    parser.add_argument(
        "--once", action="store_true", help="Run a single renewal pass and exit"
    )
    parser.add_argument(
        "--interval", type=int, default=None, help="Seconds between renewal passes"
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    args = parser.parse_args(argv)
    if args.interval is not None and args.interval <= 0:
        parser.error("--interval must be positive")
    return args, (), {"interval_seconds": args.interval, "run_once": args.once}


if __name__ == "__main__":
    sys.exit(
        WorkerLauncher().run_with_cli(
            worker_factory=RenewalWorker,
            worker_name="Renewal Scheduler",
            cli_setup_func=parse_args,
        )
    )
