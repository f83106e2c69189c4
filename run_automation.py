#!/usr/bin/env python3
"""
Clinic Automation Runner

Usage:
    python run_automation.py list
    python run_automation.py run JOB_ID [--tenant TENANT_ID | --all-tenants]
    python run_automation.py serve

Configuration comes from the environment (or .env); see
clinic_automation/config.py for the variables.
"""
import argparse
import asyncio
import json
import logging
import signal
import sys

from clinic_automation.bootstrap import create_engine
from clinic_automation.exceptions import AutomationError
from clinic_automation.registry import AutomationRegistry
from clinic_automation.utils.logging_config import configure_logging

logger = logging.getLogger(__name__)


def list_automations() -> int:
    for descriptor in AutomationRegistry().list():
        print(
            f"{descriptor.id:32} {descriptor.schedule:15} "
            f"{descriptor.category.value:12} {descriptor.priority.value:7} {descriptor.name}"
        )
    return 0


async def run_once(job_id: str, tenant_id=None, all_tenants: bool = False) -> int:
    engine = create_engine()
    try:
        if all_tenants:
            outcome = await engine.run_all_tenants(job_id)
            print(json.dumps({
                "job_id": job_id,
                "totals": outcome.totals(),
                "failures": {str(k): v for k, v in outcome.failures.items()},
            }, indent=2))
            return 1 if outcome.failures else 0

        result = await engine.run(job_id, tenant_id)
        print(json.dumps(result.to_dict(), indent=2, default=str))
        return 0
    finally:
        await engine.stop()


async def serve() -> int:
    engine = create_engine()
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop_event.set)

    engine.start()
    logger.info("Automation scheduler running (Ctrl+C to stop)")
    try:
        await stop_event.wait()
        logger.info("Shutdown requested")
    finally:
        await engine.stop()
        logger.info(f"Final status: {json.dumps(engine.status()['last_ticks'], default=str)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Clinic automation engine")
    parser.add_argument("--debug", action="store_true", help="verbose logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="list registered automations")

    run = sub.add_parser("run", help="run one automation immediately")
    run.add_argument("job_id")
    scope = run.add_mutually_exclusive_group()
    scope.add_argument("--tenant", default=None, help="tenant (clinic) id; omit for the untenanted scope")
    scope.add_argument("--all-tenants", action="store_true", help="fan out across every tenant")

    sub.add_parser("serve", help="run the cron scheduler until interrupted")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(logging.DEBUG if args.debug else logging.INFO)

    try:
        if args.command == "list":
            return list_automations()
        if args.command == "run":
            return asyncio.run(run_once(args.job_id, args.tenant, args.all_tenants))
        return asyncio.run(serve())
    except AutomationError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 2
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
