"""
Protection of sensitive inquiry board fields
"""
from dataclasses import dataclass
from typing import Optional
import logging

from greensupia.utils.encryption import (
    encrypt,
    hash_password,
    is_encrypted,
    safe_decrypt,
    verify_password,
)

logger = logging.getLogger(__name__)


@dataclass
class ProtectedFields:
    """Values ready to be stored on an inquiry record"""

    email: Optional[str] = None
    password: Optional[str] = None


class InquirySecrets:
    """Encrypts inquiry contact e-mails and hashes secret-post passwords"""

    def __init__(self, encryption_key: str):
        """
        Args:
            encryption_key: Application secret used for e-mail encryption
        """
        if not encryption_key:
            raise ValueError("encryption_key must not be empty")
        self.encryption_key = encryption_key

    def protect(
        self,
        email: Optional[str] = None,
        password: Optional[str] = None,
    ) -> ProtectedFields:
        """
        Prepare inquiry fields for storage

        Args:
            email: Contact e-mail, encrypted when given
            password: Secret-post password, hashed when given

        Returns:
            ProtectedFields with the stored representations
        """
        fields = ProtectedFields()

        if email:
            # Already-stored values are passed through on updates
            fields.email = email if is_encrypted(email) else encrypt(email, self.encryption_key)
        if password:
            fields.password = hash_password(password)

        return fields

    def reveal_email(self, encrypted_email: Optional[str]) -> Optional[str]:
        """
        Decrypt a stored e-mail for internal use such as answer notifications

        Returns:
            The e-mail or None if missing or undecryptable
        """
        if not encrypted_email:
            return None

        email = safe_decrypt(encrypted_email, self.encryption_key)
        if email is None:
            logger.warning("Stored inquiry e-mail could not be decrypted")
        return email

    def check_password(self, password: str, hashed_password: Optional[str]) -> bool:
        """Verify a secret-post password against the stored hash"""
        if not hashed_password:
            return False
        return verify_password(password, hashed_password)
