"""Run one auto-scaling pass from a cron host.

This script:
1. Loads settings from the environment / .env
2. Runs a monitoring and scaling pass over active deployments
3. Optionally prunes resource samples past the retention window
4. Prints the pass summary (JSON with --json)
"""

import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import argparse
import json
from datetime import timedelta

from autoscaler.api.main import configure_logging
from autoscaler.controller import build_controller
from autoscaler.db.models import utcnow
from autoscaler.settings import get_settings


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Run one bot auto-scaling pass")
    parser.add_argument("--prune", action="store_true", help="Prune old resource samples after the pass")
    parser.add_argument("--prune-only", action="store_true", help="Only prune samples, do not run a pass")
    parser.add_argument("--json", action="store_true", help="Print the summary as JSON")
    return parser.parse_args(argv)


def main(argv=None):
    """Run a pass and print its summary."""
    args = parse_args(argv)
    settings = get_settings()
    configure_logging(settings.log_level)
    controller = build_controller(settings)

    try:
        if not args.prune_only:
            summary = controller.driver.run()
            if args.json:
                print(json.dumps(summary.to_dict(), indent=2))
            else:
                print("=" * 60)
                print("AUTO-SCALING PASS")
                print("=" * 60)
                print(f"  Checked:     {summary.checked}")
                print(f"  Scaled up:   {summary.scaled_up}")
                print(f"  Scaled down: {summary.scaled_down}")
                print(f"  Errors:      {summary.errors}")
                print(f"  Deferred:    {summary.deferred}")
                for report in summary.details:
                    print(f"  - {report.deployment_id}: [{report.outcome}] {report.decision_reason}")

        if args.prune or args.prune_only:
            cutoff = utcnow() - timedelta(days=settings.sample_retention_days)
            removed = controller.store.prune_samples(cutoff)
            print(f"\nPruned {removed:,} samples older than {settings.sample_retention_days} days")
    finally:
        controller.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
