from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.exceptions import InvalidTag
import binascii
import hashlib
import base64
import hmac
import logging
import os

logger = logging.getLogger(__name__)


class ClubKeyEncryptionStrategy:
    """
    AES-GCM encryption for club keys at rest.
    Club documents only ever hold the encrypted form; the plain key is
    recovered for admins and for comparing against a join attempt.
    """
    def __init__(self, secret_key: str):
        self._aesgcm = AESGCM(hashlib.sha256(secret_key.encode()).digest())

    def encrypt(self, plain_text: str) -> str:
        if not plain_text:
            return ""
        iv = os.urandom(12)
        ciphertext = self._aesgcm.encrypt(iv, plain_text.encode("utf-8"), None)
        combined = iv + ciphertext
        return base64.urlsafe_b64encode(combined).decode("utf-8")

    def decrypt(self, encrypted_text: str) -> str:
        if not encrypted_text:
            return ""
        try:
            padding = len(encrypted_text) % 4
            if padding:
                encrypted_text += '=' * (4 - padding)

            combined = base64.urlsafe_b64decode(encrypted_text.encode("utf-8"))
            iv = combined[:12]
            ciphertext = combined[12:]
            plaintext = self._aesgcm.decrypt(iv, ciphertext, None)
            return plaintext.decode("utf-8")
        except (InvalidTag, ValueError, binascii.Error) as e:
            logger.warning("Unable to decrypt club key: %s", e)
            return ""

    def matches(self, encrypted_text: str, candidate: str) -> bool:
        """Constant time comparison of a supplied key against the stored one"""
        stored = self.decrypt(encrypted_text)
        if not stored or not candidate:
            return False
        return hmac.compare_digest(stored.encode("utf-8"), candidate.encode("utf-8"))
