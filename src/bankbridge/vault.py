"""Envelope encryption for externally-opaque identifiers.

Requisition ids and aggregator account ids are never stored in plaintext.
Each value is encrypted with a fresh AES-256-GCM data key; the data key is
wrapped by a key-management service and stored next to the ciphertext:

    base64(json({"v": 1, "kid": ..., "dek": b64(wrapped key),
                 "nonce": b64(nonce), "ct": b64(ciphertext)}))

Error messages raised from this module never include plaintext or ciphertext.
"""

import base64
import binascii
import json
import logging
import os
from typing import Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .config import VaultConfig
from .errors import DecryptionFailure, EncryptionFailure

logger = logging.getLogger(__name__)

ENVELOPE_VERSION = 1
NONCE_LENGTH = 12
KEY_LENGTH = 32  # 256 bits
PBKDF2_ITERATIONS = 200_000


class KeyManagementService(Protocol):
    """Wraps and unwraps data keys with a managed master key."""

    key_id: str

    def wrap_key(self, data_key: bytes) -> bytes: ...

    def unwrap_key(self, wrapped_key: bytes) -> bytes: ...


class LocalKeyManagementService:
    """Key management backed by a master key derived from a configured secret."""

    def __init__(self, master_secret: str, key_id: str, salt: str):
        if not master_secret:
            raise ValueError("Vault master secret is required")
        self.key_id = key_id
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt.encode("utf-8"),
            iterations=PBKDF2_ITERATIONS,
        )
        self._master = AESGCM(kdf.derive(master_secret.encode("utf-8")))

    @classmethod
    def from_config(cls, config: VaultConfig) -> "LocalKeyManagementService":
        return cls(config.master_secret, config.key_id, config.salt)

    def wrap_key(self, data_key: bytes) -> bytes:
        nonce = os.urandom(NONCE_LENGTH)
        return nonce + self._master.encrypt(nonce, data_key, self.key_id.encode())

    def unwrap_key(self, wrapped_key: bytes) -> bytes:
        nonce, ct = wrapped_key[:NONCE_LENGTH], wrapped_key[NONCE_LENGTH:]
        return self._master.decrypt(nonce, ct, self.key_id.encode())


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


class CredentialVault:
    """Encrypts and decrypts opaque identifiers through a KMS."""

    def __init__(self, kms: KeyManagementService):
        self.kms = kms

    def encrypt(self, plaintext: str) -> str:
        """Envelope-encrypt a value.

        Args:
            plaintext: The identifier to protect

        Returns:
            str: Base64 envelope safe to persist

        Raises:
            EncryptionFailure: If the data key could not be generated or wrapped
        """
        try:
            data_key = AESGCM.generate_key(bit_length=256)
            nonce = os.urandom(NONCE_LENGTH)
            ciphertext = AESGCM(data_key).encrypt(
                nonce, plaintext.encode("utf-8"), None
            )
            envelope = {
                "v": ENVELOPE_VERSION,
                "kid": self.kms.key_id,
                "dek": _b64(self.kms.wrap_key(data_key)),
                "nonce": _b64(nonce),
                "ct": _b64(ciphertext),
            }
        except Exception as e:
            logger.error(f"Encryption failed ({type(e).__name__})")
            raise EncryptionFailure("Failed to encrypt data") from None

        return _b64(json.dumps(envelope, separators=(",", ":")).encode("utf-8"))

    def decrypt(self, token: str) -> str:
        """Decrypt an envelope produced by :meth:`encrypt`.

        Raises:
            DecryptionFailure: If the envelope is malformed, was produced with
                another key, or fails authentication
        """
        try:
            envelope = json.loads(base64.b64decode(token, validate=True))
            if envelope.get("v") != ENVELOPE_VERSION:
                raise ValueError("unsupported envelope version")
            if envelope.get("kid") != self.kms.key_id:
                raise ValueError("envelope key id mismatch")
            data_key = self.kms.unwrap_key(base64.b64decode(envelope["dek"]))
            plaintext = AESGCM(data_key).decrypt(
                base64.b64decode(envelope["nonce"]),
                base64.b64decode(envelope["ct"]),
                None,
            )
            return plaintext.decode("utf-8")
        except (
            AttributeError,
            InvalidTag,
            ValueError,
            KeyError,
            TypeError,
            binascii.Error,
            UnicodeDecodeError,
        ) as e:
            logger.error(f"Decryption failed ({type(e).__name__})")
            raise DecryptionFailure("Failed to decrypt data") from None
