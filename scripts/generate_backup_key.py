#!/usr/bin/env python3
"""
Generate the symmetric key used to encrypt backups.

The key is written with owner-only permissions and never overwrites an
existing file. Keep it outside the backup directory.

Usage:
    python scripts/generate_backup_key.py
    python scripts/generate_backup_key.py --key-path /etc/auditguard/backup.key
"""

import argparse
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from auditguard.config import get_settings
from auditguard.engine.backup.codec import generate_key_file
from auditguard.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Generate the backup encryption key")
    parser.add_argument(
        "--key-path",
        type=str,
        default=settings.backup_key_path,
        help=f"Key file to create (default: {settings.backup_key_path})",
    )
    args = parser.parse_args()
    configure_logging(settings)

    key_path = Path(args.key_path).resolve()
    backup_root = settings.backup_path
    if backup_root == key_path.parent or backup_root in key_path.parents:
        print(f"Refusing to create key inside backup directory {backup_root}", file=sys.stderr)
        return 1

    try:
        generate_key_file(key_path)
    except FileExistsError:
        logger.error("backup_key_exists", key_path=str(key_path))
        print(f"Key file already exists: {key_path}", file=sys.stderr)
        return 1
    except OSError as e:
        logger.error("backup_key_write_failed", key_path=str(key_path), error=str(e))
        print(f"Could not write key file: {e}", file=sys.stderr)
        return 1

    print(f"Backup key written to {key_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
