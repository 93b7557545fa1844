"""Content hashing and passphrase-based authenticated encryption."""

import hashlib
import hmac
import os
from typing import Dict, Optional, Tuple

import bcrypt
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from common.constants import (
    DEFAULT_KDF_ROUNDS,
    KEY_SIZE_BYTES,
    NONCE_SIZE_BYTES,
    SALT_SIZE_BYTES,
)
from drive.exceptions import DecryptionError, ValidationError

HEADER_SIZE_BYTES = SALT_SIZE_BYTES + NONCE_SIZE_BYTES


def compute_hash(data: bytes) -> str:
    """
    Compute the SHA-256 content hash of a payload.
    
    Args:
        data: Bytes to hash
        
    Returns:
        Hexadecimal string representation of SHA-256 hash
    """
    return hashlib.sha256(data).hexdigest()


def verify_hash(data: bytes, expected: str) -> bool:
    """
    Verify that data matches expected content hash.
    
    Args:
        data: Bytes to verify
        expected: Expected SHA-256 digest (hex string)
        
    Returns:
        True if the digest matches, False otherwise
    """
    return hmac.compare_digest(compute_hash(data), expected)


class IncrementalHasher:
    """
    Calculate a SHA-256 content hash incrementally for streamed data.
    
    Usage:
        hasher = IncrementalHasher()
        hasher.update(piece1)
        hasher.update(piece2)
        digest = hasher.finalize()
    """
    
    def __init__(self):
        self._hasher = hashlib.sha256()
        self._finalized = False
    
    def update(self, data: bytes) -> None:
        if self._finalized:
            raise ValueError("Cannot update after finalization")
        self._hasher.update(data)
    
    def finalize(self) -> str:
        self._finalized = True
        return self._hasher.hexdigest()
    
    def reset(self) -> None:
        self._hasher = hashlib.sha256()
        self._finalized = False


def derive_key(passphrase: str, salt: bytes, rounds: int = DEFAULT_KDF_ROUNDS) -> bytes:
    """
    Derive a 256-bit AES key from a passphrase with bcrypt-pbkdf.

    Args:
        passphrase: User-supplied passphrase (non-empty)
        salt: Random per-payload salt
        rounds: bcrypt-pbkdf work factor

    Returns:
        32-byte key
    """
    if not passphrase:
        raise ValidationError("Passphrase must not be empty")
    return bcrypt.kdf(passphrase.encode('utf-8'), salt, KEY_SIZE_BYTES, rounds, True)


def encrypt(payload: bytes, passphrase: str, rounds: int = DEFAULT_KDF_ROUNDS) -> Tuple[bytes, bytes]:
    """
    Encrypt a payload under a passphrase with AES-256-GCM.

    A fresh salt and nonce are drawn for every call. The returned ciphertext
    is self-describing: ``salt || nonce || sealed``, so it can be decrypted
    without any other state.

    Args:
        payload: Plaintext bytes
        passphrase: User-supplied passphrase
        rounds: bcrypt-pbkdf work factor

    Returns:
        Tuple of (ciphertext, nonce)
    """
    salt = os.urandom(SALT_SIZE_BYTES)
    nonce = os.urandom(NONCE_SIZE_BYTES)
    key = derive_key(passphrase, salt, rounds)
    sealed = AESGCM(key).encrypt(nonce, payload, None)
    return salt + nonce + sealed, nonce


def decrypt(
    ciphertext: bytes,
    passphrase: Optional[str],
    nonce: Optional[bytes] = None,
    rounds: int = DEFAULT_KDF_ROUNDS,
) -> bytes:
    """
    Decrypt a payload produced by :func:`encrypt`.

    Args:
        ciphertext: ``salt || nonce || sealed`` as returned by encrypt
        passphrase: Passphrase used at encryption time
        nonce: Optional nonce recorded in metadata; must match the embedded one
        rounds: bcrypt-pbkdf work factor used at encryption time

    Returns:
        Plaintext bytes

    Raises:
        DecryptionError: Wrong passphrase, tampered or truncated ciphertext
    """
    if not passphrase:
        raise DecryptionError("Unable to decrypt payload")
    if len(ciphertext) < HEADER_SIZE_BYTES + 16:
        raise DecryptionError("Unable to decrypt payload")

    salt = ciphertext[:SALT_SIZE_BYTES]
    embedded_nonce = ciphertext[SALT_SIZE_BYTES:HEADER_SIZE_BYTES]
    if nonce is not None and not hmac.compare_digest(nonce, embedded_nonce):
        raise DecryptionError("Unable to decrypt payload")

    key = derive_key(passphrase, salt, rounds)
    try:
        return AESGCM(key).decrypt(embedded_nonce, ciphertext[HEADER_SIZE_BYTES:], None)
    except InvalidTag:
        raise DecryptionError("Unable to decrypt payload") from None


def key_material(ciphertext: bytes) -> Dict[str, str]:
    """
    Extract the per-file key material (salt and nonce, hex) from a ciphertext.
    """
    return {
        'salt': ciphertext[:SALT_SIZE_BYTES].hex(),
        'nonce': ciphertext[SALT_SIZE_BYTES:HEADER_SIZE_BYTES].hex(),
    }
