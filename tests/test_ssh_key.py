import shutil

import pytest

from phasing.exceptions import SSHKeyError
from phasing.utils.ssh_key import (
    ensure_ssh_keypair,
    load_private_key,
    read_public_key_file,
)

PUBLIC_KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIExampleKey phasing"


def test_load_missing_private_key(tmp_path):
    with pytest.raises(SSHKeyError, match="phasing --init"):
        load_private_key(str(tmp_path / "phasing_key"))


def test_load_garbage_private_key(tmp_path):
    path = tmp_path / "phasing_key"
    path.write_text("not a key\n")

    with pytest.raises(SSHKeyError, match="Cannot parse"):
        load_private_key(str(path))


def test_read_public_key(tmp_path):
    path = tmp_path / "key.pub"
    path.write_text(PUBLIC_KEY + "\n\n")

    assert read_public_key_file(str(path)) == PUBLIC_KEY


def test_read_empty_public_key(tmp_path):
    path = tmp_path / "key.pub"
    path.write_text("  \n")

    with pytest.raises(SSHKeyError, match="empty"):
        read_public_key_file(str(path))


def test_ensure_keypair_reuses_existing(tmp_path):
    private = tmp_path / "phasing_key"
    private.write_text("existing")
    (tmp_path / "phasing_key.pub").write_text(PUBLIC_KEY)

    assert ensure_ssh_keypair(str(private)) == PUBLIC_KEY
    assert private.read_text() == "existing"


@pytest.mark.skipif(shutil.which("ssh-keygen") is None, reason="ssh-keygen not installed")
def test_ensure_keypair_generates_loadable_key(tmp_path):
    private = tmp_path / "keys" / "phasing_key"

    public_key = ensure_ssh_keypair(str(private))

    assert public_key.startswith("ssh-ed25519 ")
    assert public_key.endswith(" phasing")
    assert (private.stat().st_mode & 0o777) == 0o600
    assert load_private_key(str(private)) is not None
