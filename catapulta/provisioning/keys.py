"""Local SSH key discovery and fingerprints."""

import base64
import binascii
import glob
import hashlib
import os

DEFAULT_KEY_NAMES = ["id_ed25519", "id_ecdsa", "id_rsa"]


def find_default_key(ssh_dir="~/.ssh"):
    """First conventional private key whose ``.pub`` sibling exists, else None."""
    ssh_dir = os.path.expanduser(ssh_dir)
    for name in DEFAULT_KEY_NAMES:
        path = os.path.join(ssh_dir, name)
        if os.path.exists(path) and os.path.exists(path + ".pub"):
            return path
    return None


def read_public_key(private_key_path):
    pub_path = os.path.expanduser(private_key_path) + ".pub"
    with open(pub_path) as f:
        return f.read().strip()


def md5_fingerprint(public_key):
    """Colon-separated MD5 fingerprint of an OpenSSH public key line.

    Same format as ``ssh-keygen -l -E md5`` (without the ``MD5:`` prefix),
    which is what cloud APIs report for registered keys.
    """
    parts = public_key.split()
    if len(parts) < 2:
        raise ValueError("Not an OpenSSH public key")
    try:
        blob = base64.b64decode(parts[1], validate=True)
    except binascii.Error as e:
        raise ValueError(f"Not an OpenSSH public key: {e}") from e
    digest = hashlib.md5(blob).hexdigest()
    return ":".join(digest[i : i + 2] for i in range(0, len(digest), 2))


def local_public_keys(ssh_dir="~/.ssh"):
    """Yield (private_key_path, public_key_line) for every ``*.pub`` in *ssh_dir*."""
    for pub_path in sorted(glob.glob(os.path.join(os.path.expanduser(ssh_dir), "*.pub"))):
        with open(pub_path) as f:
            line = f.read().strip()
        if line:
            yield pub_path[: -len(".pub")], line
