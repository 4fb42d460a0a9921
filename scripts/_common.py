"""
Shared setup for the operator scripts.

Builds the same service graph the API uses, runs one guarded orchestrator
operation, prints a summary and maps the outcome to an exit code.
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Awaitable, Callable, Optional

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from auditguard.config import Settings, get_settings
from auditguard.container import Services, build_services
from auditguard.engine.backup.codec import BackupConfigurationError
from auditguard.models.recovery import RecoveryAttempt
from auditguard.utils.logging import ErrorLogBuffer, configure_logging, get_logger

logger = get_logger(__name__)


def add_store_arguments(parser: argparse.ArgumentParser) -> None:
    """Overrides for the environment-provided store and backup locations."""
    parser.add_argument("--db-path", type=str, default=None, help="Live store file (default: DB_PATH)")
    parser.add_argument(
        "--backup-dir", type=str, default=None, help="Backup directory (default: BACKUP_DIR)"
    )
    parser.add_argument(
        "--key-path", type=str, default=None, help="Backup key file (default: BACKUP_KEY_PATH)"
    )


def settings_from_args(args: argparse.Namespace) -> Settings:
    overrides = {
        field: value
        for field, value in (
            ("db_path", getattr(args, "db_path", None)),
            ("backup_dir", getattr(args, "backup_dir", None)),
            ("backup_key_path", getattr(args, "key_path", None)),
        )
        if value is not None
    }
    settings = get_settings()
    return settings.model_copy(update=overrides) if overrides else settings


def run_operation(
    args: argparse.Namespace,
    operation: Callable[[Services], Awaitable[Optional[RecoveryAttempt]]],
    label: str,
) -> int:
    """
    Run one guarded operation and return the process exit code.

    Returns:
        0 on success, 1 on failure or misconfiguration
    """
    settings = settings_from_args(args)
    error_log = ErrorLogBuffer()
    configure_logging(settings, error_buffer=error_log)

    try:
        services = build_services(settings, error_log=error_log)
    except BackupConfigurationError as e:
        logger.error("script_configuration_error", operation=label, error=str(e))
        print(f"{label} failed: {e}", file=sys.stderr)
        return 1

    try:
        attempt = asyncio.run(operation(services))
    finally:
        services.close()

    if attempt is None:
        print(f"{label} not started: another recovery is running", file=sys.stderr)
        return 1

    print(f"{label}: {'succeeded' if attempt.success else 'failed'}")
    for step in attempt.steps:
        status = "ok" if step.success else f"FAILED ({step.error})"
        print(f"  {step.name:<20} {status}  [{step.duration_ms:.0f} ms]")
    for key, value in attempt.details.items():
        print(f"  {key}: {value}")

    return 0 if attempt.success else 1
