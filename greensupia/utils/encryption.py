"""
Field encryption and password hashing utilities

Payloads are AES-256-GCM encrypted with a PBKDF2-HMAC-SHA512 derived key and
serialized as ``salt:iv:tag:ciphertext`` (hex). Password hashes are stored as
``salt:hash`` (hex).
"""
import hmac
import os
import re
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from greensupia.config import Config, config

IV_LENGTH = 16
SALT_LENGTH = 64
KEY_LENGTH = 32
TAG_LENGTH = 16
ITERATIONS = 100_000
PASSWORD_SALT_LENGTH = 16
PASSWORD_HASH_LENGTH = 64

# Bound into every ciphertext. Changing it makes stored payloads undecryptable.
ASSOCIATED_DATA = b"greensupia-encryption"

_PAYLOAD_PATTERN = re.compile(
    r"^[0-9a-f]{%d}:[0-9a-f]{%d}:[0-9a-f]{%d}:(?:[0-9a-f]{2})*$"
    % (SALT_LENGTH * 2, IV_LENGTH * 2, TAG_LENGTH * 2)
)


class EncryptionError(Exception):
    """Raised when encryption, decryption or hashing fails"""


def _pbkdf2(password: str, salt: bytes, length: int) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA512(),
        length=length,
        salt=salt,
        iterations=ITERATIONS,
    )
    return kdf.derive(password.encode("utf-8"))


class EncryptionService:
    """
    Authenticated encryption and salted password hashing

    All operations are synchronous and CPU bound (PBKDF2 is deliberately
    slow). Async callers should run them in a worker thread.
    """

    @staticmethod
    def derive_key(password: str, salt: bytes) -> bytes:
        """Derive the 32-byte AES key for a password and salt"""
        return _pbkdf2(password, salt, KEY_LENGTH)

    @classmethod
    def encrypt(cls, plaintext: str, password: str) -> str:
        """
        Encrypt text for storage

        Args:
            plaintext: Text to protect
            password: Secret used to derive the key

        Returns:
            Payload in ``salt:iv:tag:ciphertext`` hex format

        Raises:
            EncryptionError: If any cryptographic step fails
        """
        try:
            salt = os.urandom(SALT_LENGTH)
            iv = os.urandom(IV_LENGTH)
            key = cls.derive_key(password, salt)

            # AESGCM appends the tag to the ciphertext
            sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), ASSOCIATED_DATA)
            ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        except Exception as e:
            raise EncryptionError(f"Encryption failed: {type(e).__name__}") from e

        return ":".join([salt.hex(), iv.hex(), tag.hex(), ciphertext.hex()])

    @classmethod
    def decrypt(cls, payload: str, password: str) -> str:
        """
        Decrypt a stored payload

        Args:
            payload: Value produced by ``encrypt``
            password: Secret the payload was encrypted with

        Returns:
            The original plaintext

        Raises:
            EncryptionError: On malformed payloads, wrong password or tampering
        """
        parts = payload.split(":") if isinstance(payload, str) else []
        if len(parts) != 4:
            raise EncryptionError("Invalid encrypted data format")

        salt_hex, iv_hex, tag_hex, ciphertext_hex = parts

        try:
            salt = bytes.fromhex(salt_hex)
            iv = bytes.fromhex(iv_hex)
            tag = bytes.fromhex(tag_hex)
            ciphertext = bytes.fromhex(ciphertext_hex)

            key = cls.derive_key(password, salt)
            plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, ASSOCIATED_DATA)
            return plaintext.decode("utf-8")
        except InvalidTag as e:
            raise EncryptionError("Decryption failed: authentication failed") from e
        except Exception as e:
            raise EncryptionError(f"Decryption failed: {type(e).__name__}") from e

    @staticmethod
    def hash_password(password: str) -> str:
        """
        Hash a password for credential storage

        Returns:
            ``salt:hash`` with a 16-byte salt and a 64-byte PBKDF2 hash
        """
        try:
            salt = os.urandom(PASSWORD_SALT_LENGTH)
            digest = _pbkdf2(password, salt, PASSWORD_HASH_LENGTH)
        except Exception as e:
            raise EncryptionError(f"Password hashing failed: {type(e).__name__}") from e

        return f"{salt.hex()}:{digest.hex()}"

    @staticmethod
    def verify_password(password: str, hashed_password: str) -> bool:
        """
        Check a password against a stored hash

        Never raises. Malformed hashes and mismatches both return False.
        """
        try:
            parts = hashed_password.split(":")
            if len(parts) != 2 or not parts[0] or not parts[1]:
                return False

            salt = bytes.fromhex(parts[0])
            expected = bytes.fromhex(parts[1])
            candidate = _pbkdf2(password, salt, PASSWORD_HASH_LENGTH)
            return hmac.compare_digest(candidate, expected)
        except Exception:
            return False

    @staticmethod
    def generate_random_string(length: int = 32) -> str:
        """Return ``length`` cryptographically random bytes as hex"""
        return os.urandom(length).hex()


def encrypt(plaintext: str, password: str) -> str:
    return EncryptionService.encrypt(plaintext, password)


def decrypt(payload: str, password: str) -> str:
    return EncryptionService.decrypt(payload, password)


def hash_password(password: str) -> str:
    return EncryptionService.hash_password(password)


def verify_password(password: str, hashed_password: str) -> bool:
    return EncryptionService.verify_password(password, hashed_password)


def generate_random_string(length: int = 32) -> str:
    return EncryptionService.generate_random_string(length)


def get_encryption_key(cfg: Optional[Config] = None) -> str:
    """Get the application encryption key"""
    cfg = cfg or config
    if not cfg.ENCRYPTION_KEY:
        raise ValueError("ENCRYPTION_KEY environment variable is not set")
    return cfg.ENCRYPTION_KEY


def is_encrypted(value: str) -> bool:
    """
    Check if a value looks like an encrypted payload

    Args:
        value: String to check

    Returns:
        True if the value has the ``salt:iv:tag:ciphertext`` shape
    """
    if not value or not isinstance(value, str):
        return False
    return bool(_PAYLOAD_PATTERN.match(value))


def safe_decrypt(payload: str, password: str) -> Optional[str]:
    """
    Decrypt a payload, returning None on failure

    Only for paths where a failure is not an access decision.
    """
    try:
        return decrypt(payload, password)
    except EncryptionError:
        return None
