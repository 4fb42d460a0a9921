"""
Backup codec — symmetric encryption and checksum sidecars.

The backup and restore pipelines only see the BackupCodec interface, so
the encryption scheme can change without touching either state machine.
The shipped codec uses Fernet (AES-128-CBC + HMAC-SHA256) with a key file
held outside the backup directory.

Sidecars use the `sha256sum` output format: "<hex digest>  <file name>".
"""

import hashlib
import os
from abc import ABC, abstractmethod
from pathlib import Path

import structlog
from cryptography.fernet import Fernet, InvalidToken

logger = structlog.get_logger()

CHUNK_SIZE = 1024 * 1024


class BackupError(Exception):
    """A backup or restore operation failed."""

    pass


class BackupConfigurationError(BackupError):
    """Key material or backup directory is missing or misplaced. Not retried."""

    pass


class ChecksumMismatchError(BackupError):
    """A sidecar is missing, malformed, or does not match its artifact."""

    pass


class BackupCodec(ABC):
    """Encrypt/decrypt whole files."""

    @abstractmethod
    def encrypt_file(self, source: Path, destination: Path) -> None:
        """Encrypt `source` into `destination`."""

    @abstractmethod
    def decrypt_file(self, source: Path, destination: Path) -> None:
        """
        Decrypt `source` into `destination`.

        Raises:
            BackupError: If the ciphertext is invalid for this key
        """


class FernetBackupCodec(BackupCodec):
    """
    Fernet codec reading its key from a file.

    Attributes:
        key_path: Location of the key file
    """

    def __init__(self, key_path: str | Path, backup_dir: str | Path | None = None):
        """
        Args:
            key_path: Key file path
            backup_dir: If given, the key file must not live inside it

        Raises:
            BackupConfigurationError: If the key is inside backup_dir
        """
        self.key_path = Path(key_path).resolve()
        if backup_dir is not None:
            backup_root = Path(backup_dir).resolve()
            if backup_root == self.key_path.parent or backup_root in self.key_path.parents:
                raise BackupConfigurationError(
                    f"Key file {self.key_path} must live outside backup directory {backup_root}"
                )

    def _cipher(self) -> Fernet:
        if not self.key_path.is_file():
            raise BackupConfigurationError(f"Backup key file not found: {self.key_path}")
        try:
            return Fernet(self.key_path.read_bytes().strip())
        except (OSError, ValueError) as e:
            raise BackupConfigurationError(f"Backup key file is unusable: {e}") from e

    def check_key(self) -> None:
        """Raise BackupConfigurationError unless the key file is usable."""
        self._cipher()

    def encrypt_file(self, source: Path, destination: Path) -> None:
        token = self._cipher().encrypt(Path(source).read_bytes())
        Path(destination).write_bytes(token)

    def decrypt_file(self, source: Path, destination: Path) -> None:
        cipher = self._cipher()
        try:
            plaintext = cipher.decrypt(Path(source).read_bytes())
        except InvalidToken as e:
            raise BackupError(f"Cannot decrypt {source}: invalid token") from e
        Path(destination).write_bytes(plaintext)


def generate_key_file(path: str | Path) -> Path:
    """
    Write a fresh Fernet key readable only by the owner.

    Raises:
        FileExistsError: If the key file already exists
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "wb") as fh:
        fh.write(Fernet.generate_key())
    logger.info("backup_key_generated", key_path=str(path))
    return path


def sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def sidecar_path(artifact: Path) -> Path:
    return artifact.with_name(artifact.name + ".sha256")


def write_checksum_sidecar(artifact: Path) -> str:
    """Hash `artifact` and write its sidecar. Returns the hex digest."""
    digest = sha256_file(artifact)
    sidecar_path(artifact).write_text(f"{digest}  {artifact.name}\n", encoding="utf-8")
    return digest


def read_checksum_sidecar(artifact: Path) -> str:
    """
    Read the expected digest from the sidecar.

    Raises:
        ChecksumMismatchError: If the sidecar is missing or malformed
    """
    sidecar = sidecar_path(artifact)
    try:
        line = sidecar.read_text(encoding="utf-8").strip()
    except OSError as e:
        raise ChecksumMismatchError(f"Sidecar unreadable for {artifact.name}: {e}") from e

    parts = line.split(maxsplit=1)
    if len(parts) != 2 or len(parts[0]) != 64:
        raise ChecksumMismatchError(f"Malformed sidecar for {artifact.name}")
    digest, name = parts[0].lower(), parts[1].lstrip("*")
    if Path(name).name != artifact.name:
        raise ChecksumMismatchError(f"Sidecar for {artifact.name} names {name}")
    return digest


def verify_checksum(artifact: Path) -> str:
    """
    Check an artifact against its sidecar.

    Returns:
        The verified hex digest

    Raises:
        ChecksumMismatchError: On a missing/malformed sidecar or a mismatch
    """
    expected = read_checksum_sidecar(artifact)
    try:
        actual = sha256_file(artifact)
    except OSError as e:
        raise ChecksumMismatchError(f"Artifact unreadable: {artifact.name}: {e}") from e
    if actual != expected:
        raise ChecksumMismatchError(
            f"Checksum mismatch for {artifact.name}: expected {expected}, got {actual}"
        )
    return actual
