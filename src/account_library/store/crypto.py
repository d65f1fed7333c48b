# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Shared encryption key material for the credential store.

Tokens are encrypted at rest with Fernet (AES-128-CBC + HMAC). The key is
generated once by the first writer and stored next to the store file with
0600 permissions; every later opener, writer or reader, only reads it.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from ..core.errors import KeyUnavailable, StoreUnavailable

lib_logger = logging.getLogger("account_library")


class KeyMaterial:
    """Fernet wrapper bound to one key file."""

    def __init__(self, key: bytes, path: Optional[Path] = None):
        self.path = path
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError) as e:
            raise KeyUnavailable(f"Malformed key material at {path}: {e}") from e

    def encrypt(self, secret: str) -> str:
        return self._fernet.encrypt(secret.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        """
        Raises:
            KeyUnavailable: The token was not produced with this key
        """
        try:
            raw = self._fernet.decrypt(token.encode("ascii"))
        except (InvalidToken, ValueError) as e:
            raise KeyUnavailable(
                "Token cannot be decrypted with the available key material"
            ) from e
        return raw.decode("utf-8", errors="replace")

    # =========================================================================
    # KEY FILE LIFECYCLE
    # =========================================================================

    @classmethod
    def load(cls, path: Path) -> Optional["KeyMaterial"]:
        """
        Read existing key material, never creating it.

        Returns:
            KeyMaterial, or None if the file is missing, unreadable or malformed
        """
        key = _read_key_bytes(path)
        if key is None:
            return None
        try:
            return cls(key, path)
        except KeyUnavailable as e:
            lib_logger.warning(str(e))
            return None

    @classmethod
    def load_or_create(cls, path: Path) -> "KeyMaterial":
        """
        Read the key, generating it first if this store has none yet.

        Only the writer calls this. Creation uses O_EXCL so two racing
        creators cannot both write a key.

        Raises:
            StoreUnavailable: The key file exists but cannot be used, or
                cannot be created
        """
        existing = _read_key_bytes(path)
        if existing is None and not path.exists():
            key = Fernet.generate_key()
            try:
                _write_key_bytes(path, key)
                lib_logger.info(f"Generated store key material at {path}")
                return cls(key, path)
            except FileExistsError:
                existing = _read_key_bytes(path)
            except OSError as e:
                raise StoreUnavailable(f"Cannot create key file {path}: {e}") from e

        if existing is None:
            # Never regenerate: existing ciphertexts would become unreadable
            raise StoreUnavailable(f"Key file {path} exists but is unreadable")
        try:
            return cls(existing, path)
        except KeyUnavailable as e:
            raise StoreUnavailable(str(e)) from e


def _read_key_bytes(path: Path) -> Optional[bytes]:
    try:
        raw = path.read_bytes().strip()
    except OSError:
        return None
    return raw or None


def _write_key_bytes(path: Path, key: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    try:
        os.write(fd, key + b"\n")
    finally:
        os.close(fd)
