"""CLI entrypoints (sitesync serve, sitesync deploy)."""

from __future__ import annotations

import argparse
import sys

from sitesync.core.exceptions import ConfigurationError
from sitesync.deploy.models import RunStatus

EXIT_CODES = {
    RunStatus.SUCCEEDED: 0,
    RunStatus.FAILED: 1,
    RunStatus.BUSY: 2,
}


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="sitesync", description="Static site deploy trigger")
    sub = parser.add_subparsers(dest="cmd")
    sub.add_parser("serve", help="Run the trigger HTTP server")
    sub.add_parser("deploy", help="Run one deployment now and wait for it")
    args = parser.parse_args(argv)

    try:
        if args.cmd == "serve":
            from sitesync.main import run
            run()
            return 0

        if args.cmd == "deploy":
            from sitesync.core.config import load_settings
            from sitesync.deploy.orchestrator import DeploymentOrchestrator
            from sitesync.trigger.models import AuthMethod, DeploymentTrigger
            from sitesync.utils.logging import setup_logging

            settings = load_settings()
            setup_logging(settings.log_level, settings.log_format)
            orchestrator = DeploymentOrchestrator.from_settings(settings)
            outcome = orchestrator.run(DeploymentTrigger(source=AuthMethod.OVERRIDE, ref=settings.deploy_ref))
            return EXIT_CODES[outcome.status]
    except ConfigurationError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
