"""
Agent key pair handling.

The private key authenticates the tunnel session against the agent's sshd;
the public half is shipped to the cluster by `phasing --init`.
"""

import os
import subprocess

import asyncssh

from phasing.exceptions import SSHKeyError
from phasing.utils.logger import get_logger

log = get_logger(__name__)


def load_private_key(file_path: str) -> asyncssh.SSHKey:
    """
    Load the private key used to dial the agent.

    Raises:
        SSHKeyError: If the file is missing or cannot be parsed.
    """
    path = os.path.expanduser(file_path)
    if not os.path.isfile(path):
        raise SSHKeyError(
            f"SSH key file not found: '{file_path}'. Run 'phasing --init' first."
        )

    try:
        return asyncssh.read_private_key(path)
    except (OSError, asyncssh.KeyImportError) as e:
        raise SSHKeyError(f"Cannot parse SSH key file '{file_path}': {e}") from e


def read_public_key_file(file_path: str) -> str:
    """Return the stripped contents of a public key file."""
    path = os.path.expanduser(file_path)
    try:
        with open(path) as f:
            key = f.read().strip()
    except OSError as e:
        raise SSHKeyError(f"Cannot read public key '{file_path}': {e}") from e

    if not key:
        raise SSHKeyError(f"Public key file '{file_path}' is empty.")
    if not key.startswith(("ssh-", "ecdsa-")):
        log.warning(f"'{file_path}' does not look like an OpenSSH public key")
    return key


def ensure_ssh_keypair(private_key_path: str, comment: str = "phasing") -> str:
    """
    Reuse the key pair at private_key_path, or generate an ed25519 one.

    Returns:
        The public key line.

    Raises:
        SSHKeyError: ssh-keygen is missing or failed.
    """
    private_path = os.path.expanduser(private_key_path)
    public_path = private_path + ".pub"

    if os.path.isfile(private_path) and os.path.isfile(public_path):
        log.debug(f"Reusing SSH key pair {private_path}")
        return read_public_key_file(public_path)

    key_dir = os.path.dirname(private_path)
    if key_dir:
        os.makedirs(key_dir, mode=0o700, exist_ok=True)
    # ssh-keygen prompts before overwriting a half-present pair
    for stale in (private_path, public_path):
        if os.path.exists(stale):
            os.remove(stale)

    cmd = ["ssh-keygen", "-q", "-t", "ed25519", "-N", "", "-f", private_path]
    if comment:
        cmd += ["-C", comment]
    try:
        subprocess.run(cmd, capture_output=True, text=True, check=True)
    except FileNotFoundError:
        raise SSHKeyError("ssh-keygen not found. Install OpenSSH and retry.") from None
    except subprocess.CalledProcessError as e:
        raise SSHKeyError(f"ssh-keygen failed: {e.stderr.strip()}") from e

    os.chmod(private_path, 0o600)
    os.chmod(public_path, 0o644)
    log.info(f"Generated SSH key pair {private_path}")
    return read_public_key_file(public_path)
