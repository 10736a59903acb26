"""
Credential encryption shared with the job-submitting application.

Stored credentials use AES-256-GCM with a key derived from a shared secret
via scrypt. The serialized form is ``iv:tag:ciphertext``, each part
hex-encoded.
"""

from __future__ import annotations

import os
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .errors import CredentialError


KEY_SALT = b"salt"
KEY_LENGTH = 32
IV_LENGTH = 12
TAG_LENGTH = 16


@lru_cache(maxsize=8)
def derive_key(secret: str) -> bytes:
    """Derive the AES key from the shared secret."""
    kdf = Scrypt(salt=KEY_SALT, length=KEY_LENGTH, n=2**14, r=8, p=1)
    return kdf.derive(secret.encode("utf-8"))


def encrypt_credential(plaintext: str, secret: str) -> str:
    """Encrypt a credential into the ``iv:tag:ciphertext`` form."""
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(derive_key(secret)).encrypt(iv, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"


def decrypt_credential(token: str, secret: str) -> str:
    """Decrypt a credential stored in the ``iv:tag:ciphertext`` form.

    Raises:
        CredentialError: If the token is malformed or fails authentication
    """
    parts = token.split(":")
    if len(parts) != 3 or not all(parts):
        raise CredentialError("Encrypted credential is malformed")

    try:
        iv, tag, ciphertext = (bytes.fromhex(part) for part in parts)
    except ValueError as e:
        raise CredentialError("Encrypted credential is not hex encoded", cause=e) from e

    try:
        plaintext = AESGCM(derive_key(secret)).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as e:
        raise CredentialError("Encrypted credential failed authentication", cause=e) from e

    return plaintext.decode("utf-8")
