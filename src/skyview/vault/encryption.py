# Vault - Encryption Service
#
# Master credential → key-encryption key (PBKDF2-SHA256)
# Random data key (DEK) wrapped by the key-encryption key
# Field encryption with AES-256-GCM under the DEK

import base64
import os
from typing import Tuple

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


class EncryptionService:
    """
    Handles encryption/decryption for vault fields.

    Flow:
    1. User enters master credential
    2. PBKDF2 derives a 256-bit key-encryption key from credential + salt
    3. The key-encryption key unwraps the random data key
    4. AES-256-GCM encrypts/decrypts every sensitive field with the data key
    5. Each encryption uses a fresh random nonce, stored in front of the
       ciphertext: blob = nonce (12 bytes) || ciphertext+tag
    """

    # PBKDF2 parameters (OWASP recommendations)
    PBKDF2_ITERATIONS = 600_000  # OWASP 2023: 600k iterations for PBKDF2-SHA256
    KEY_LENGTH = 32  # 256 bits for AES-256
    SALT_LENGTH = 32  # 256-bit salt
    NONCE_LENGTH = 12  # 96-bit nonce for GCM (recommended)

    @staticmethod
    def derive_key(credential: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> bytes:
        """
        Derive a key-encryption key from the master credential using PBKDF2.

        Args:
            credential: User's master credential
            salt: Random salt (stored with vault)
            iterations: PBKDF2 iteration count

        Returns:
            256-bit key
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=EncryptionService.KEY_LENGTH,
            salt=salt,
            iterations=iterations,
        )

        return kdf.derive(credential.encode('utf-8'))

    @staticmethod
    def generate_salt() -> bytes:
        """Generate cryptographically random salt."""
        return os.urandom(EncryptionService.SALT_LENGTH)

    @staticmethod
    def generate_key() -> bytes:
        """Generate a random 256-bit data key."""
        return AESGCM.generate_key(bit_length=EncryptionService.KEY_LENGTH * 8)

    @staticmethod
    def encrypt(plaintext: bytes, key: bytes) -> bytes:
        """
        Encrypt bytes using AES-256-GCM.

        Args:
            plaintext: Data to encrypt
            key: 256-bit key

        Returns:
            nonce || ciphertext (ciphertext includes the GCM tag)
        """
        # Nonce must be unique per encryption
        nonce = os.urandom(EncryptionService.NONCE_LENGTH)
        ciphertext = AESGCM(key).encrypt(nonce, plaintext, None)
        return nonce + ciphertext

    @staticmethod
    def decrypt(blob: bytes, key: bytes) -> bytes:
        """
        Decrypt a blob produced by encrypt().

        Raises:
            cryptography.exceptions.InvalidTag: If authentication fails
            ValueError: If the blob is too short to hold a nonce and tag
        """
        if len(blob) < EncryptionService.NONCE_LENGTH + 16:
            raise ValueError("Ciphertext too short")
        nonce = blob[:EncryptionService.NONCE_LENGTH]
        return AESGCM(key).decrypt(nonce, blob[EncryptionService.NONCE_LENGTH:], None)

    @staticmethod
    def encrypt_text(plaintext: str, key: bytes) -> bytes:
        return EncryptionService.encrypt(plaintext.encode('utf-8'), key)

    @staticmethod
    def decrypt_text(blob: bytes, key: bytes) -> str:
        return EncryptionService.decrypt(blob, key).decode('utf-8')

    @staticmethod
    def wrap_key(data_key: bytes, wrapping_key: bytes) -> bytes:
        """Encrypt the data key under the credential-derived key."""
        return EncryptionService.encrypt(data_key, wrapping_key)

    @staticmethod
    def unwrap_key(wrapped: bytes, wrapping_key: bytes) -> bytes:
        """Recover the data key. Raises InvalidTag for a wrong credential."""
        return EncryptionService.decrypt(wrapped, wrapping_key)

    @staticmethod
    def encode_for_storage(data: bytes) -> str:
        """Encode binary data as base64 text (JSON snapshots, config rows)."""
        return base64.b64encode(data).decode('utf-8')

    @staticmethod
    def decode_from_storage(data: str) -> bytes:
        """Decode base64-encoded data."""
        return base64.b64decode(data.encode('utf-8'))


MIN_CREDENTIAL_LENGTH = 8


def verify_master_credential(credential: str) -> Tuple[bool, str]:
    """
    Verify a new master credential meets strength requirements.

    Requirements:
    - At least 8 characters
    - Mix of uppercase, lowercase, numbers
    - No common weak passwords

    Returns:
        (is_valid, error_message)
    """
    if len(credential) < MIN_CREDENTIAL_LENGTH:
        return False, f"Master password must be at least {MIN_CREDENTIAL_LENGTH} characters long"

    if not any(c.isupper() for c in credential):
        return False, "Master password must contain at least one uppercase letter"

    if not any(c.islower() for c in credential):
        return False, "Master password must contain at least one lowercase letter"

    if not any(c.isdigit() for c in credential):
        return False, "Master password must contain at least one number"

    weak_passwords = [
        "Password1", "Password123", "Passw0rd", "Welcome1",
        "Admin123", "Qwerty123",
    ]
    if credential in weak_passwords:
        return False, "This password is too common. Please choose a stronger password."

    return True, ""
