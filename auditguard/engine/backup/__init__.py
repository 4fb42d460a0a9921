"""
Backup and restore.

Components:
    BackupCodec / FernetBackupCodec: File encryption behind a narrow interface
    BackupPipeline: Create, verify and prune encrypted artifacts
    RestorePipeline: Integrity-first restore with a safety-copy revert
"""

from .codec import (
    BackupCodec,
    BackupConfigurationError,
    BackupError,
    ChecksumMismatchError,
    FernetBackupCodec,
    generate_key_file,
    sha256_file,
    sidecar_path,
    verify_checksum,
)
from .pipeline import ARTIFACT_PREFIX, ARTIFACT_SUFFIX, BackupPipeline, artifact_name
from .restore import RestorePipeline

__all__ = [
    "ARTIFACT_PREFIX",
    "ARTIFACT_SUFFIX",
    "BackupCodec",
    "BackupConfigurationError",
    "BackupError",
    "BackupPipeline",
    "ChecksumMismatchError",
    "FernetBackupCodec",
    "RestorePipeline",
    "artifact_name",
    "generate_key_file",
    "sha256_file",
    "sidecar_path",
    "verify_checksum",
]
