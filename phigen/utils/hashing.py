# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Checksums for model artifacts.

Exported weights can carry a SHA-256 in their metadata. The loader
recomputes it before loading and refuses a file that doesn't match, so a
truncated download or a tampered file never reaches the device.
"""

import hashlib
from pathlib import Path

HASH_BUFFER_SIZE = 1024 * 1024  # weights files run to gigabytes


def compute_sha256(file_path: Path) -> str:
    """
    Compute the SHA-256 hex digest of a file.

    Reads the file in 1 MiB chunks so multi-gigabyte weights never have to
    fit in memory at once.

    Args:
        file_path: Path to the file to hash.

    Returns:
        Lowercase hex string of the SHA-256 digest.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        OSError: If the file can't be read.
    """
    hasher = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(HASH_BUFFER_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def verify_checksum(file_path: Path, expected_hash: str) -> bool:
    """
    Check whether a file's SHA-256 matches the expected hash.

    The expected value usually comes straight out of a JSON metadata file,
    so surrounding whitespace and upper-case hex are tolerated.

    Args:
        file_path: Path to the file to verify.
        expected_hash: Expected hex SHA-256 digest.

    Returns:
        True if the hash matches, False otherwise.

    Raises:
        FileNotFoundError: If the file doesn't exist.
    """
    return compute_sha256(file_path) == expected_hash.strip().lower()
