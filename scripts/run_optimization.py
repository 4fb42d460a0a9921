#!/usr/bin/env python3
"""
Run the optimization sweep (reindex, compact, optimize, analyze).

Usage:
    python scripts/run_optimization.py --db-path ./data/audit.sqlite
"""

import argparse
import sys

from _common import add_store_arguments, run_operation

from auditguard.models.enums import Trigger


def main() -> int:
    parser = argparse.ArgumentParser(description="Optimize the audit store")
    add_store_arguments(parser)
    args = parser.parse_args()

    return run_operation(
        args,
        lambda services: services.orchestrator.run_optimization(Trigger.OPERATOR),
        "Optimization",
    )


if __name__ == "__main__":
    sys.exit(main())
