"""Credential codec for monitored-target passwords (AES-256-GCM).

Ciphertext layout: base64(nonce[12] || ciphertext || tag). A fresh random nonce
is drawn for every encryption so identical passwords never share ciphertext.
The 32-byte key is the SHA-256 digest of CREDENTIAL_SECRET_KEY.
"""
from __future__ import annotations
import base64
import hashlib
import os
from functools import lru_cache
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from dbmonitor.config import get_settings

NONCE_BYTES = 12


class EncryptionError(Exception):
    pass


@lru_cache(maxsize=4)
def _cipher_for(secret: str) -> AESGCM:
    return AESGCM(hashlib.sha256(secret.encode()).digest())


def get_cipher() -> AESGCM:
    secret = get_settings().credential_secret_key
    if not secret:
        raise EncryptionError('CREDENTIAL_SECRET_KEY missing')
    return _cipher_for(secret)


def encrypt_secret(value: str) -> str:
    cipher = get_cipher()
    nonce = os.urandom(NONCE_BYTES)
    sealed = cipher.encrypt(nonce, value.encode(), None)
    return base64.b64encode(nonce + sealed).decode()


def decrypt_secret(token: str) -> str:
    cipher = get_cipher()
    try:
        raw = base64.b64decode(token.encode(), validate=True)
    except ValueError as e:
        raise EncryptionError('malformed_ciphertext') from e
    if len(raw) <= NONCE_BYTES:
        raise EncryptionError('malformed_ciphertext')
    try:
        return cipher.decrypt(raw[:NONCE_BYTES], raw[NONCE_BYTES:], None).decode()
    except InvalidTag as e:
        raise EncryptionError('decryption_failed') from e


__all__ = ["encrypt_secret", "decrypt_secret", "EncryptionError"]
