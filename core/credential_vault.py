# core/credential_vault.py
"""
Encrypted credential vault for the Microsoft Graph app registration

Credentials live in a single file as base64(iv || AES-256-CBC(json)).
The key never touches disk: it is derived from installation secrets by a
KeyMaterial provider, so a copied file is useless on another installation.
"""

import base64
import binascii
import hashlib
import hmac
import json
import logging
import os
import secrets
import stat
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, Optional, Union

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from core.exceptions import CredentialsError, DecryptionError

logger = logging.getLogger(__name__)

IV_SIZE = 16
KEY_SIZE = 32
BLOCK_BITS = 128
DOMAIN_SEPARATOR = b"contact_relay_v1"

CREDENTIALS_FILENAME = "credentials.enc"
ACCESS_RULE_FILENAME = ".htaccess"
PLACEHOLDER_FILENAME = "index.html"
ACCESS_RULE = "Deny from all\n"
PLACEHOLDER = "<!DOCTYPE html><title></title>\n"
ERASE_MIN_BYTES = 1024


@dataclass(frozen=True)
class Credentials:
    """OAuth client credentials for the sending mailbox"""
    tenant_id: str
    client_id: str
    client_secret: str
    sender_email: str = ""

    FIELDS = ("tenant_id", "client_id", "client_secret", "sender_email")

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> "Credentials":
        """
        Build credentials from a decoded mapping

        Raises:
            DecryptionError: If the mapping is not exactly a credentials object
        """
        if not isinstance(data, dict) or set(data) != set(cls.FIELDS):
            raise DecryptionError("Decrypted payload is not a credentials object")
        if not all(isinstance(data[field], str) for field in cls.FIELDS):
            raise DecryptionError("Credential fields must be strings")
        if not (data["tenant_id"] and data["client_id"] and data["client_secret"]):
            raise DecryptionError("Decrypted credentials are incomplete")
        return cls(**data)

    def __repr__(self) -> str:
        return (
            f"Credentials(tenant_id={self.tenant_id!r}, client_id={self.client_id!r}, "
            f"client_secret='***', sender_email={self.sender_email!r})"
        )


class KeyMaterial(ABC):
    """Source of the 32-byte vault key"""

    @abstractmethod
    def derive_key(self) -> bytes:
        raise NotImplementedError


class InstallationKeyMaterial(KeyMaterial):
    """
    Derive the key from two installation-specific secrets

    key = SHA-256(auth_key || secure_auth_key || domain separator)
    """

    def __init__(self, auth_key: str, secure_auth_key: str,
                 context: bytes = DOMAIN_SEPARATOR):
        if not auth_key or not secure_auth_key:
            raise ValueError("Both installation secrets are required to derive the vault key")
        self._auth_key = auth_key
        self._secure_auth_key = secure_auth_key
        self._context = context

    def derive_key(self) -> bytes:
        material = self._auth_key.encode("utf-8") + self._secure_auth_key.encode("utf-8") + self._context
        return hashlib.sha256(material).digest()


class StaticKeyMaterial(KeyMaterial):
    """Key handed over by an external secret store"""

    def __init__(self, key: bytes):
        if len(key) != KEY_SIZE:
            raise ValueError(f"Vault key must be {KEY_SIZE} bytes, got {len(key)}")
        self._key = key

    def derive_key(self) -> bytes:
        return self._key


class CredentialVault:
    """
    Encrypts, persists, loads and erases the single credentials file
    """

    def __init__(self, directory: Union[str, Path], key_material: KeyMaterial,
                 filename: str = CREDENTIALS_FILENAME):
        """
        Args:
            directory: Protected directory holding the credentials file
            key_material: Provider of the encryption key
            filename: Name of the encrypted credentials file
        """
        self.directory = Path(directory)
        self.path = self.directory / filename
        self._key_material = key_material
        self._key: Optional[bytes] = None
        self._mac_key: Optional[bytes] = None
        self._write_lock = threading.Lock()

    def _keys(self):
        # Derived once per vault instance, never written anywhere
        if self._key is None:
            key = self._key_material.derive_key()
            if len(key) != KEY_SIZE:
                raise ValueError(f"Vault key must be {KEY_SIZE} bytes, got {len(key)}")
            self._key = key
            self._mac_key = hashlib.sha256(key + b"|integrity").digest()
        return self._key, self._mac_key

    @staticmethod
    def _canonical(fields: Dict[str, str]) -> bytes:
        return json.dumps(fields, sort_keys=True, separators=(",", ":")).encode("utf-8")

    def _digest(self, fields: Dict[str, str]) -> str:
        _, mac_key = self._keys()
        return hmac.new(mac_key, self._canonical(fields), hashlib.sha256).hexdigest()

    def encrypt(self, credentials: Credentials) -> str:
        """
        Encrypt credentials under a fresh IV

        Args:
            credentials: Credentials to seal

        Returns:
            base64(iv || ciphertext) as ASCII text
        """
        key, _ = self._keys()
        fields = credentials.to_dict()
        payload = dict(fields, digest=self._digest(fields))

        padder = padding.PKCS7(BLOCK_BITS).padder()
        padded = padder.update(self._canonical(payload)) + padder.finalize()

        iv = os.urandom(IV_SIZE)
        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return base64.b64encode(iv + ciphertext).decode("ascii")

    def decrypt(self, blob: Union[str, bytes]) -> Credentials:
        """
        Reverse encrypt()

        Raises:
            DecryptionError: If the blob is malformed, truncated, tampered with
                or was produced under different key material
        """
        key, _ = self._keys()
        try:
            if isinstance(blob, str):
                blob = blob.strip().encode("ascii")
            raw = base64.b64decode(blob, validate=True)
        except (binascii.Error, UnicodeEncodeError, ValueError) as e:
            raise DecryptionError("Credential blob is not valid base64") from e

        ciphertext = raw[IV_SIZE:]
        if not ciphertext or len(ciphertext) % IV_SIZE:
            raise DecryptionError("Credential blob is truncated")

        decryptor = Cipher(algorithms.AES(key), modes.CBC(raw[:IV_SIZE])).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        try:
            unpadder = padding.PKCS7(BLOCK_BITS).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            payload = json.loads(plaintext.decode("utf-8"))
        except ValueError as e:
            # Bad padding, bad UTF-8 and bad JSON all land here
            raise DecryptionError("Credential blob could not be decrypted") from e

        if not isinstance(payload, dict) or not isinstance(payload.get("digest"), str):
            raise DecryptionError("Decrypted payload is not a credentials object")
        digest = payload.pop("digest")
        credentials = Credentials.from_dict(payload)
        expected = self._digest(credentials.to_dict())
        if not hmac.compare_digest(digest.encode("utf-8"), expected.encode("ascii")):
            raise DecryptionError("Credential integrity check failed")
        return credentials

    def _ensure_directory(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        os.chmod(self.directory, stat.S_IRWXU)  # 700

        access_rule = self.directory / ACCESS_RULE_FILENAME
        if not access_rule.exists():
            access_rule.write_text(ACCESS_RULE)
            os.chmod(access_rule, 0o644)

        placeholder = self.directory / PLACEHOLDER_FILENAME
        if not placeholder.exists():
            placeholder.write_text(PLACEHOLDER)
            os.chmod(placeholder, 0o644)

    def save(self, credentials: Credentials) -> None:
        """Atomically replace the credentials file"""
        blob = self.encrypt(credentials)
        with self._write_lock:
            self._ensure_directory()
            fd, tmp_name = tempfile.mkstemp(prefix=".credentials-", dir=self.directory)
            try:
                os.chmod(tmp_name, stat.S_IRUSR | stat.S_IWUSR)  # 600
                with os.fdopen(fd, "w", encoding="ascii") as handle:
                    handle.write(blob)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        logger.info(f"Credentials saved to {self.path}")

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> Optional[Credentials]:
        """
        Load and decrypt the stored credentials

        Returns:
            Credentials, or None when nothing has been saved yet

        Raises:
            CredentialsError: If the file exists but cannot be read
            DecryptionError: If the file was read but cannot be decrypted
        """
        try:
            blob = self.path.read_text(encoding="ascii")
        except FileNotFoundError:
            return None
        except UnicodeDecodeError as e:
            raise DecryptionError("Credential file is not ASCII") from e
        except OSError as e:
            logger.error(f"Credential file {self.path} unreadable: {e.__class__.__name__}")
            raise CredentialsError("Credential file unreadable") from e
        return self.decrypt(blob)

    def secure_erase(self) -> None:
        """
        Overwrite the credentials file with random bytes, delete it, then
        remove the protective artifacts and the directory itself
        """
        with self._write_lock:
            if self.path.is_file():
                size = max(self.path.stat().st_size, ERASE_MIN_BYTES)
                with open(self.path, "r+b") as handle:
                    handle.write(secrets.token_bytes(size))
                    handle.flush()
                    os.fsync(handle.fileno())
                self.path.unlink()
                logger.info(f"Credentials file {self.path} overwritten and removed")

            if not self.directory.is_dir():
                return
            for entry in self.directory.iterdir():
                if entry.is_file() or entry.is_symlink():
                    entry.unlink()
            try:
                self.directory.rmdir()
            except OSError as e:
                logger.warning(f"Credentials directory not removed: {e}")
