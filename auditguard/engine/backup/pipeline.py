"""
Backup Pipeline — encrypted, checksummed snapshots of the live store.

Artifact layout inside the backup directory:

    audit_db_<ISO-8601 with '-' for ':' and '.'>.bak.enc
    audit_db_<...>.bak.enc.sha256      ("<digest>  <file name>")

The pipeline exclusively owns these files: it creates them, verifies them by
trial decryption and trial restore, and prunes them past the retention
horizon. No other component deletes or renames them.

Version: backup_pipeline_v1
"""

import shutil
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

import structlog

from auditguard.models.backup import BackupArtifact
from auditguard.storage.base import StorageBackend
from auditguard.storage.sqlite_storage import SQLiteStorage

from .codec import (
    BackupCodec,
    BackupConfigurationError,
    BackupError,
    ChecksumMismatchError,
    read_checksum_sidecar,
    sidecar_path,
    verify_checksum,
    write_checksum_sidecar,
)

logger = structlog.get_logger()

ARTIFACT_PREFIX = "audit_db_"
ARTIFACT_SUFFIX = ".bak.enc"


def artifact_name(moment: datetime) -> str:
    """Artifact file name for a creation time (UTC, millisecond precision)."""
    moment = moment.astimezone(timezone.utc)
    stamp = moment.strftime("%Y-%m-%dT%H-%M-%S-") + f"{moment.microsecond // 1000:03d}Z"
    return f"{ARTIFACT_PREFIX}{stamp}{ARTIFACT_SUFFIX}"


class BackupPipeline:
    """
    Creates, verifies and prunes backup artifacts.

    Attributes:
        storage: Live store to snapshot
        codec: Encryption codec (key material lives outside backup_dir)
        backup_dir: Artifact directory
        retention_days: Retention horizon
        clock: Callable returning "now" (UTC)
        scratch_store_factory: Opens a decrypted scratch file for trial restore

    Example:
        >>> pipeline = BackupPipeline(storage, FernetBackupCodec(key_path), "backups")
        >>> artifact = pipeline.create_backup()
        >>> pipeline.verify_backup(artifact)
        True
    """

    def __init__(
        self,
        storage: StorageBackend,
        codec: BackupCodec,
        backup_dir: str | Path,
        retention_days: int = 30,
        clock: Optional[Callable[[], datetime]] = None,
        scratch_store_factory: Optional[Callable[[Path], StorageBackend]] = None,
    ):
        self.storage = storage
        self.codec = codec
        self.backup_dir = Path(backup_dir)
        self.retention_days = retention_days
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.scratch_store_factory = scratch_store_factory or (
            lambda path: SQLiteStorage(path, initialize_schema=False, connect=False)
        )

    def ensure_backup_dir(self) -> None:
        """
        Create the backup directory if needed.

        Raises:
            BackupConfigurationError: If the directory cannot be created
        """
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error("backup_dir_create_failed", backup_dir=str(self.backup_dir), error=str(e))
            raise BackupConfigurationError(f"Cannot create backup directory: {e}") from e

    def _new_artifact_path(self) -> Path:
        moment = self.clock()
        path = self.backup_dir / artifact_name(moment)
        while path.exists():
            moment += timedelta(milliseconds=1)
            path = self.backup_dir / artifact_name(moment)
        return path

    # =========================================================================
    # Create
    # =========================================================================

    def create_backup(self) -> BackupArtifact:
        """
        Snapshot, encrypt and checksum the live store.

        The file copy runs inside an immediate-mode transaction so no writer
        can change the file mid-copy. The plaintext copy is always removed;
        on failure the ciphertext and sidecar are removed too.

        Returns:
            The new (unverified) artifact

        Raises:
            BackupConfigurationError: Missing/unusable key or directory
            BackupError: Any other step failure
        """
        self.ensure_backup_dir()
        artifact_path = self._new_artifact_path()
        plain_path = artifact_path.with_name(artifact_path.name[: -len(".enc")])

        try:
            with self.storage.transaction(immediate=True):
                shutil.copyfile(self.storage.path, plain_path)
            self.codec.encrypt_file(plain_path, artifact_path)
            digest = write_checksum_sidecar(artifact_path)
        except Exception as e:
            for leftover in (artifact_path, sidecar_path(artifact_path)):
                leftover.unlink(missing_ok=True)
            logger.error("backup_create_failed", artifact=str(artifact_path), error=str(e))
            if isinstance(e, BackupError):
                raise
            raise BackupError(f"Backup creation failed: {e}") from e
        finally:
            plain_path.unlink(missing_ok=True)

        artifact = BackupArtifact(
            path=artifact_path,
            created_at=self.clock(),
            checksum_sha256=digest,
        )
        logger.info("backup_created", artifact=str(artifact_path), checksum=digest)
        return artifact

    # =========================================================================
    # Verify
    # =========================================================================

    def verify_backup(self, artifact: BackupArtifact | Path) -> bool:
        """
        Verify an artifact by checksum, trial decryption and trial restore.

        Never raises; a failed verification is an expected outcome. The
        artifact file itself is never modified, and the scratch copy is
        always removed.

        Returns:
            True if every check passed
        """
        path = artifact.path if isinstance(artifact, BackupArtifact) else Path(artifact)
        try:
            verify_checksum(path)
            with tempfile.TemporaryDirectory(prefix="auditguard-verify-") as scratch_dir:
                scratch_path = Path(scratch_dir) / "verify.db"
                self.codec.decrypt_file(path, scratch_path)
                scratch = self.scratch_store_factory(scratch_path)
                try:
                    scratch.open()
                    messages = scratch.integrity_check()
                finally:
                    scratch.close()
            if messages != ["ok"]:
                logger.warning("backup_verify_integrity_failed", artifact=str(path), messages=messages[:5])
                return False
        except Exception as e:
            logger.warning("backup_verify_failed", artifact=str(path), error=str(e))
            return False

        if isinstance(artifact, BackupArtifact):
            artifact.verified = True
        logger.info("backup_verified", artifact=str(path))
        return True

    # =========================================================================
    # Listing and retention
    # =========================================================================

    def artifact_paths(self) -> list[Path]:
        """Artifact files, newest first (names sort chronologically)."""
        if not self.backup_dir.is_dir():
            return []
        return sorted(
            self.backup_dir.glob(f"{ARTIFACT_PREFIX}*{ARTIFACT_SUFFIX}"),
            key=lambda p: p.name,
            reverse=True,
        )

    def list_artifacts(self) -> list[BackupArtifact]:
        """Artifacts with a readable sidecar, newest first."""
        artifacts = []
        for path in self.artifact_paths():
            try:
                digest = read_checksum_sidecar(path)
                mtime = path.stat().st_mtime
            except (ChecksumMismatchError, OSError) as e:
                logger.warning("backup_listing_skipped", artifact=str(path), error=str(e))
                continue
            artifacts.append(
                BackupArtifact(
                    path=path,
                    created_at=datetime.fromtimestamp(mtime, tz=timezone.utc),
                    checksum_sha256=digest,
                )
            )
        return artifacts

    def remove_old_backups(self, now: Optional[datetime] = None) -> list[Path]:
        """
        Delete artifacts (and their sidecars) older than the retention horizon.

        Age is measured from the artifact's modification time; verification
        state is not consulted. Failures are logged per file and never raised.

        Returns:
            Paths of the removed artifacts
        """
        now_ts = (now or self.clock()).timestamp()
        horizon = self.retention_days * 24 * 60 * 60
        removed = []

        for path in self.artifact_paths():
            try:
                if now_ts - path.stat().st_mtime <= horizon:
                    continue
                path.unlink()
                sidecar_path(path).unlink(missing_ok=True)
                removed.append(path)
                logger.info("backup_removed", artifact=str(path))
            except OSError as e:
                logger.error("backup_remove_failed", artifact=str(path), error=str(e))

        return removed

    def run_backup(self) -> BackupArtifact:
        """
        Create, verify, then prune.

        Pruning runs after verification so a fresh artifact is always
        checked before the retention sweep sees it.

        Raises:
            BackupError: If the artifact could not be created
        """
        artifact = self.create_backup()
        self.verify_backup(artifact)
        self.remove_old_backups()
        return artifact
