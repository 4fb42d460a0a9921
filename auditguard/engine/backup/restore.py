"""
Restore Pipeline — integrity-first recovery of the live store.

State machine:

    CHECK_INTEGRITY --healthy--> DONE
        |unhealthy
    REPAIR (compact + reindex, re-check) --healthy--> DONE
        |unhealthy
    FIND_BACKUP (newest artifact whose checksum verifies) --none--> FAILED
        |
    DECRYPT -> SWAP_IN -> REVALIDATE --pass--> CLEANUP -> DONE
                              |fail
                          REVERT_SWAP -> FAILED

Cheap checks always run before expensive ones, and a failed restore always
puts the previous live file back from its `.bak` safety copy.

Version: restore_pipeline_v1
"""

import shutil
import time
from pathlib import Path
from typing import Optional

import structlog

from auditguard.models.enums import RestoreState
from auditguard.models.recovery import RestoreResult
from auditguard.storage.base import StorageBackend, StorageError

from .codec import BackupCodec, BackupConfigurationError, ChecksumMismatchError, verify_checksum
from .pipeline import BackupPipeline

logger = structlog.get_logger()


class RestorePipeline:
    """
    Runs the restore state machine against the live store.

    Must only be invoked under the orchestrator's mutual exclusion: the
    swap closes and reopens the live handle.

    Attributes:
        storage: Live store
        backups: Source of artifacts (newest first)
        codec: Decryption codec
    """

    def __init__(self, storage: StorageBackend, backups: BackupPipeline, codec: BackupCodec):
        self.storage = storage
        self.backups = backups
        self.codec = codec

    def run(self) -> RestoreResult:
        """
        Execute the full state machine.

        Returns:
            RestoreResult describing the terminal state; never raises for
            expected failures (no backup, failed revalidation)

        Raises:
            BackupConfigurationError: Missing key material (fatal, not retried)
        """
        started = time.perf_counter()
        visited: list[RestoreState] = []

        def finish(success: bool, state: RestoreState, message: str, backup: Optional[Path] = None):
            visited.append(state)
            logger.info(
                "restore_finished",
                success=success,
                state=state.value,
                backup=str(backup) if backup else None,
                message=message,
            )
            return RestoreResult(
                success=success,
                state=state,
                message=message,
                backup_path=str(backup) if backup else None,
                states_visited=visited,
                duration_ms=(time.perf_counter() - started) * 1000,
            )

        visited.append(RestoreState.CHECK_INTEGRITY)
        if self.storage.is_healthy():
            return finish(True, RestoreState.DONE, "Store is healthy")

        visited.append(RestoreState.REPAIR)
        if self.repair():
            return finish(True, RestoreState.DONE, "Store repaired in place")

        visited.append(RestoreState.FIND_BACKUP)
        backup = self.find_backup()
        if backup is None:
            return finish(False, RestoreState.FAILED, "No valid backup found")

        restored, states = self.restore_from_artifact(backup)
        visited.extend(states)
        if restored:
            return finish(True, RestoreState.DONE, f"Restored from {backup.name}", backup)
        return finish(False, RestoreState.FAILED, f"Restore from {backup.name} failed", backup)

    def repair(self) -> bool:
        """Compact and rebuild indexes in place, then re-check integrity."""
        try:
            self.storage.vacuum()
            self.storage.execute("REINDEX")
        except StorageError as e:
            logger.warning("restore_repair_failed", error=str(e))
            return False
        return self.storage.is_healthy()

    def find_backup(self) -> Optional[Path]:
        """
        Newest artifact whose checksum sidecar verifies.

        Artifacts that fail are skipped, never deleted.
        """
        for path in self.backups.artifact_paths():
            try:
                verify_checksum(path)
            except ChecksumMismatchError as e:
                logger.warning("restore_backup_skipped", artifact=str(path), error=str(e))
                continue
            logger.info("restore_backup_selected", artifact=str(path))
            return path
        return None

    def restore_from_artifact(self, artifact: Path) -> tuple[bool, list[RestoreState]]:
        """
        Decrypt, swap in behind a safety copy, revalidate; revert on failure.

        Returns:
            (success, states visited from DECRYPT onward)

        Raises:
            BackupConfigurationError: Missing key material
        """
        live_path = self.storage.path
        safety_path = live_path.with_name(live_path.name + ".bak")
        temp_path = artifact.with_name(artifact.name + ".temp.db")
        states = [RestoreState.DECRYPT]

        try:
            self.codec.decrypt_file(artifact, temp_path)
        except BackupConfigurationError:
            temp_path.unlink(missing_ok=True)
            raise
        except Exception as e:
            logger.error("restore_decrypt_failed", artifact=str(artifact), error=str(e))
            temp_path.unlink(missing_ok=True)
            return False, states

        states.append(RestoreState.SWAP_IN)
        try:
            shutil.copyfile(live_path, safety_path)
        except OSError as e:
            logger.error("restore_safety_copy_failed", live=str(live_path), error=str(e))
            temp_path.unlink(missing_ok=True)
            return False, states

        try:
            self.storage.close()
            shutil.copyfile(temp_path, live_path)
            self.storage.open()
            states.append(RestoreState.REVALIDATE)
            healthy = self.storage.is_healthy()
        except (OSError, StorageError) as e:
            logger.error("restore_swap_failed", artifact=str(artifact), error=str(e))
            healthy = False

        if healthy:
            states.append(RestoreState.CLEANUP)
            safety_path.unlink(missing_ok=True)
            temp_path.unlink(missing_ok=True)
            return True, states

        states.append(RestoreState.REVERT_SWAP)
        self._revert(safety_path, live_path)
        temp_path.unlink(missing_ok=True)
        return False, states

    def _revert(self, safety_path: Path, live_path: Path) -> None:
        """Put the pre-swap live file back and reopen the handle."""
        self.storage.close()
        try:
            shutil.copyfile(safety_path, live_path)
        except OSError as e:
            # Keep the safety copy for manual recovery
            logger.critical("restore_revert_failed", safety_copy=str(safety_path), error=str(e))
            return
        safety_path.unlink(missing_ok=True)
        try:
            self.storage.open()
        except StorageError as e:
            logger.error("restore_reopen_after_revert_failed", error=str(e))
        logger.warning("restore_reverted", live=str(live_path))
