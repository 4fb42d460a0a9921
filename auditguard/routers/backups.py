"""
Backup and restore router.

Wired to:
- BackupPipeline for listing and verifying artifacts
- RecoveryOrchestrator for guarded backup and restore runs
"""

import asyncio

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from auditguard.container import Services
from auditguard.models.enums import Trigger
from auditguard.utils.logging import get_logger

from .dependencies import busy_conflict, get_services

logger = get_logger(__name__)
router = APIRouter()


class VerifyBackupRequest(BaseModel):
    """Verify backup request."""

    name: str = Field(..., min_length=1, description="Artifact file name")


@router.get("/")
async def list_backups(services: Services = Depends(get_services)):
    """List artifacts with a readable checksum sidecar, newest first."""
    artifacts = await asyncio.to_thread(services.backups.list_artifacts)
    return {
        "success": True,
        "data": {
            "backup_dir": str(services.backups.backup_dir),
            "retention_days": services.backups.retention_days,
            "total_count": len(artifacts),
            "artifacts": [
                {
                    "name": a.name,
                    "created_at": a.created_at.isoformat(),
                    "checksum_sha256": a.checksum_sha256,
                    "size_bytes": a.path.stat().st_size if a.path.exists() else 0,
                }
                for a in artifacts
            ],
        },
    }


@router.post("/")
async def create_backup(services: Services = Depends(get_services)):
    """Create, verify and prune, under the recovery guard."""
    logger.info("backup_requested")
    attempt = await services.orchestrator.run_backup(Trigger.OPERATOR)
    if attempt is None:
        raise busy_conflict("backup")
    return {"success": attempt.success, "data": attempt.model_dump(mode="json")}


@router.post("/verify")
async def verify_backup(
    request: VerifyBackupRequest,
    services: Services = Depends(get_services),
):
    """Trial-decrypt and trial-restore one artifact. The artifact is not modified."""
    matches = [p for p in services.backups.artifact_paths() if p.name == request.name]
    if not matches:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Backup {request.name} not found",
        )

    verified = await asyncio.to_thread(services.backups.verify_backup, matches[0])
    return {"success": True, "data": {"name": request.name, "verified": verified}}


@router.post("/restore")
async def restore_backup(services: Services = Depends(get_services)):
    """Run the restore state machine, under the recovery guard."""
    logger.warning("restore_requested")
    attempt = await services.orchestrator.run_restore(Trigger.OPERATOR)
    if attempt is None:
        raise busy_conflict("restore")
    return {"success": attempt.success, "data": attempt.model_dump(mode="json")}
