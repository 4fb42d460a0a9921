#!/usr/bin/env python3
"""
Create, verify and prune an encrypted backup of the audit store.

Usage:
    python scripts/run_backup.py
    python scripts/run_backup.py --db-path ./data/audit.sqlite --backup-dir ./backups
"""

import argparse
import sys

from _common import add_store_arguments, run_operation

from auditguard.models.enums import Trigger


def main() -> int:
    parser = argparse.ArgumentParser(description="Back up the audit store")
    add_store_arguments(parser)
    args = parser.parse_args()

    return run_operation(
        args,
        lambda services: services.orchestrator.run_backup(Trigger.OPERATOR),
        "Backup",
    )


if __name__ == "__main__":
    sys.exit(main())
