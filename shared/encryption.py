"""Field-level encryption for bookmark and category content."""

import base64
import logging
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

KEY_SIZE = 32
NONCE_SIZE = 12
ALGORITHM = "AES-256-GCM"


class EncryptionError(Exception):
    """Raised when a field cannot be encrypted or decrypted."""


class EncryptionService:
    """Encrypts individual string fields with AES-256-GCM.

    Ciphertext is ``base64(nonce || ciphertext || tag)`` so every field can be
    stored as plain text in the remote tables.
    """

    def __init__(
        self,
        encryption_key: Optional[str] = None,
        key_file: Optional[str] = None,
        auto_generate: bool = True
    ):
        """
        Initialize encryption service.

        Args:
            encryption_key: Base64-encoded 32-byte key. Takes precedence over key_file.
            key_file: Path where the key is persisted between runs
            auto_generate: Whether a missing key may be generated on first use.
                          When False, encrypting without a key raises EncryptionError.
        """
        self.key_file = key_file
        self.auto_generate = auto_generate
        self._key: Optional[bytes] = None

        if encryption_key:
            self._key = self._decode_key(encryption_key)
        elif key_file and os.path.exists(key_file):
            with open(key_file, "r") as f:
                self._key = self._decode_key(f.read().strip())

    @property
    def is_key_available(self) -> bool:
        return self._key is not None

    # Key management

    def get_or_create_key(self) -> bytes:
        """Return the active key, generating and persisting one if allowed."""
        if self._key is not None:
            return self._key

        if not self.auto_generate:
            raise EncryptionError("Encryption key not found")

        return self.generate_new_key()

    def generate_new_key(self) -> bytes:
        """
        Generate and store a fresh key.

        Data encrypted with the previous key can no longer be decrypted.
        """
        key = AESGCM.generate_key(bit_length=256)
        self._store_key(key)
        self._key = key
        logger.info("New encryption key generated")
        return key

    def export_key(self) -> str:
        """Export the active key as base64 for backup on another device."""
        return base64.b64encode(self.get_or_create_key()).decode()

    def import_key(self, base64_key: str):
        """Import a key exported from another device."""
        key = self._decode_key(base64_key)
        self._store_key(key)
        self._key = key
        logger.info("Encryption key imported")

    def delete_key(self):
        """Forget the key (e.g. on account removal)."""
        if self.key_file and os.path.exists(self.key_file):
            os.remove(self.key_file)
        self._key = None
        logger.info("Encryption key deleted")

    # Field encryption

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a plaintext string.

        Args:
            plaintext: The string to encrypt

        Returns:
            Base64-encoded nonce, ciphertext and tag
        """
        key = self.get_or_create_key()
        nonce = os.urandom(NONCE_SIZE)
        sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + sealed).decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a string produced by encrypt().

        Raises:
            EncryptionError: If the key is missing or the ciphertext is invalid
        """
        if self._key is None:
            raise EncryptionError("Encryption key not found")

        try:
            combined = base64.b64decode(ciphertext.encode(), validate=True)
        except ValueError as e:
            raise EncryptionError(f"Invalid ciphertext: {e}") from e

        if len(combined) <= NONCE_SIZE:
            raise EncryptionError("Invalid ciphertext: too short")

        nonce, sealed = combined[:NONCE_SIZE], combined[NONCE_SIZE:]
        try:
            plain = AESGCM(self._key).decrypt(nonce, sealed, None)
        except InvalidTag as e:
            raise EncryptionError("Decryption failed: authentication tag mismatch") from e

        try:
            return plain.decode("utf-8")
        except UnicodeDecodeError as e:
            raise EncryptionError("Decrypted data is not valid UTF-8") from e

    def encrypt_optional(self, plaintext: Optional[str]) -> Optional[str]:
        """Encrypt a value, passing through None and empty strings as None."""
        if not plaintext:
            return None
        return self.encrypt(plaintext)

    def decrypt_optional(self, ciphertext: Optional[str]) -> Optional[str]:
        """Decrypt a value, passing through None and empty strings as None."""
        if not ciphertext:
            return None
        return self.decrypt(ciphertext)

    # Private helpers

    def _store_key(self, key: bytes):
        if not self.key_file:
            return
        directory = os.path.dirname(self.key_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.key_file, "w") as f:
            f.write(base64.b64encode(key).decode())
        os.chmod(self.key_file, 0o600)

    @staticmethod
    def _decode_key(base64_key: str) -> bytes:
        try:
            key = base64.b64decode(base64_key.encode(), validate=True)
        except ValueError as e:
            raise EncryptionError(f"Invalid key format: {e}") from e
        if len(key) != KEY_SIZE:
            raise EncryptionError(f"Invalid key format: expected {KEY_SIZE} bytes, got {len(key)}")
        return key

    @staticmethod
    def generate_key() -> str:
        """
        Generate a new encryption key.

        Returns:
            Base64-encoded encryption key
        """
        return base64.b64encode(AESGCM.generate_key(bit_length=256)).decode()
