"""
Encryption of the local data file.

The local document store keeps every record in one JSON file encrypted with Fernet
from the `cryptography` library. This module loads the Fernet key from disk,
generating it on first run.

Security Note: the key file must be kept secret and out of version control; losing it
makes the data file unreadable.
"""
# clientlog/encryption.py

import logging
from pathlib import Path

from cryptography.fernet import Fernet

logger = logging.getLogger(__name__)


def write_key(key_path) -> bytes:
    """Generates a new Fernet key and saves it to `key_path`.

    Returns:
        bytes: The generated key.
    """
    key = Fernet.generate_key()
    path = Path(key_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(key)
    return key


def load_key(key_path) -> bytes:
    """Loads the Fernet key stored at `key_path`."""
    return Path(key_path).read_bytes()


def load_encryptor(key_path) -> Fernet:
    """Returns a Fernet instance for `key_path`, creating the key when it is missing."""
    try:
        key = load_key(key_path)
    except FileNotFoundError:
        logger.warning("Encryption key %s not found. Generating a new one.", key_path)
        key = write_key(key_path)
    return Fernet(key)
