"""Backup artifact model."""

from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field


class BackupArtifact(BaseModel):
    """
    One encrypted backup file plus its checksum sidecar.

    Attributes:
        path: Ciphertext path (`audit_db_<timestamp>.bak.enc`)
        created_at: Creation time (file modification time when listed from disk)
        checksum_sha256: Hex digest of the ciphertext
        encrypted: Always True; plaintext copies never outlive create_backup()
        verified: True only after a successful trial restore in this process
    """

    path: Path
    created_at: datetime
    checksum_sha256: str = Field(min_length=64, max_length=64)
    encrypted: bool = True
    verified: bool = False

    @property
    def sidecar_path(self) -> Path:
        return self.path.with_name(self.path.name + ".sha256")

    @property
    def name(self) -> str:
        return self.path.name
