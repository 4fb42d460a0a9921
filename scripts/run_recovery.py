#!/usr/bin/env python3
"""
Run the restore state machine against the audit store.

Checks integrity first, repairs in place if it can, and only then restores
the newest backup whose checksum verifies.

Usage:
    python scripts/run_recovery.py
    python scripts/run_recovery.py --backup-dir ./backups --key-path ~/.auditguard_key
"""

import argparse
import sys

from _common import add_store_arguments, run_operation

from auditguard.models.enums import Trigger


def main() -> int:
    parser = argparse.ArgumentParser(description="Recover the audit store")
    add_store_arguments(parser)
    args = parser.parse_args()

    return run_operation(
        args,
        lambda services: services.orchestrator.run_restore(Trigger.OPERATOR),
        "Recovery",
    )


if __name__ == "__main__":
    sys.exit(main())
