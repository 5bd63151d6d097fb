"""SSH key pair handling for the instance's ``ssh_authorized_keys`` metadata."""

from __future__ import annotations

import logging
import shutil
import subprocess
from datetime import datetime
from pathlib import Path

from .config import MAX_SSH_PUBLIC_KEY_BYTES
from .events import Event

logger = logging.getLogger(__name__)

KEYGEN_TIMEOUT_SECONDS = 60
VALID_KEY_PREFIXES = (
    "ssh-rsa ",
    "ssh-ed25519 ",
    "ecdsa-sha2-nistp256 ",
    "ecdsa-sha2-nistp384 ",
    "ecdsa-sha2-nistp521 ",
)


class SSHKeyError(Exception):
    """Raised when the public key is missing, malformed or cannot be created."""

    pass


def split_key_paths(path: Path) -> tuple[Path, Path]:
    """Return ``(private, public)`` paths for a configured key path.

    The configured path may name either half of the pair.
    """
    if path.suffix == ".pub":
        return path.with_suffix(""), path
    return path, path.with_name(path.name + ".pub")


def ensure_ssh_key_pair(path: Path) -> Path:
    """Reuse the public key at ``path`` or generate a new RSA pair.

    Returns:
        Path to the public key.

    Raises:
        SSHKeyError: If ssh-keygen is unavailable or fails.
    """
    private_path, public_path = split_key_paths(path)

    if public_path.is_file():
        logger.info(
            "Using existing SSH public key",
            extra={"event": Event.SSH_KEY_REUSE, "path": str(public_path)},
        )
        return public_path

    if not shutil.which("ssh-keygen"):
        raise SSHKeyError(f"ssh-keygen not found; create {public_path} manually")

    logger.info(
        "Creating SSH key pair",
        extra={
            "event": Event.SSH_KEY_CREATE,
            "private_key": str(private_path),
            "public_key": str(public_path),
        },
    )
    private_path.parent.mkdir(parents=True, exist_ok=True)
    comment = f"ampere-a1-{datetime.now():%Y%m%d}"
    cmd = [
        "ssh-keygen", "-t", "rsa", "-b", "4096",
        "-f", str(private_path), "-N", "", "-C", comment,
    ]
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=KEYGEN_TIMEOUT_SECONDS,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        raise SSHKeyError(f"ssh-keygen timed out after {KEYGEN_TIMEOUT_SECONDS}s") from e

    if result.returncode != 0:
        raise SSHKeyError(f"Failed to generate SSH key pair: {result.stderr.strip()}")
    if not public_path.is_file():
        raise SSHKeyError(f"ssh-keygen did not produce {public_path}")
    return public_path


def read_public_key(path: Path) -> str:
    """Read and sanity-check an OpenSSH public key.

    Raises:
        SSHKeyError: If the file is unreadable, too large, or not a public key.
    """
    try:
        if path.stat().st_size > MAX_SSH_PUBLIC_KEY_BYTES:
            raise SSHKeyError(f"SSH public key exceeds {MAX_SSH_PUBLIC_KEY_BYTES} bytes: {path}")
        key = path.read_text(encoding="utf-8").strip()
    except OSError as e:
        raise SSHKeyError(f"Cannot read SSH public key {path}: {e}") from e

    if not key.startswith(VALID_KEY_PREFIXES):
        raise SSHKeyError(f"Not an OpenSSH public key: {path}")
    return key
