"""Unit tests for hashing and passphrase encryption."""

import pytest

from drive.crypto import (
    HEADER_SIZE_BYTES,
    IncrementalHasher,
    compute_hash,
    decrypt,
    derive_key,
    encrypt,
    key_material,
    verify_hash,
)
from drive.exceptions import DecryptionError, ValidationError


class TestHashing:
    """Test content hashing."""

    def test_hash_is_deterministic(self):
        payload = b"hello ledger"
        assert compute_hash(payload) == compute_hash(payload)

    def test_hash_is_lowercase_sha256_hex(self):
        digest = compute_hash(b"")
        assert digest == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"

    def test_different_payloads_differ(self):
        assert compute_hash(b"a") != compute_hash(b"b")

    def test_verify_hash(self):
        payload = b"content"
        assert verify_hash(payload, compute_hash(payload)) is True
        assert verify_hash(payload + b"!", compute_hash(payload)) is False

    def test_incremental_hasher_matches_one_shot(self):
        hasher = IncrementalHasher()
        for part in (b"abc", b"def", b"ghi"):
            hasher.update(part)
        assert hasher.finalize() == compute_hash(b"abcdefghi")

    def test_update_after_finalize_rejected(self):
        hasher = IncrementalHasher()
        hasher.finalize()
        with pytest.raises(ValueError):
            hasher.update(b"late")

    def test_incremental_hasher_reset(self):
        hasher = IncrementalHasher()
        hasher.update(b"junk")
        hasher.reset()
        hasher.update(b"abc")
        assert hasher.finalize() == compute_hash(b"abc")


class TestEncryption:
    """Test passphrase encryption round trips and failures."""

    @pytest.mark.parametrize("payload", [b"", b"x", b"secret data" * 100])
    def test_round_trip(self, payload):
        ciphertext, nonce = encrypt(payload, "correct horse", rounds=1)
        assert decrypt(ciphertext, "correct horse", nonce=nonce, rounds=1) == payload

    def test_ciphertext_differs_from_plaintext(self):
        ciphertext, _ = encrypt(b"plain text", "pw", rounds=1)
        assert b"plain text" not in ciphertext
        assert len(ciphertext) > HEADER_SIZE_BYTES

    def test_fresh_salt_and_nonce_per_call(self):
        first, _ = encrypt(b"same", "pw", rounds=1)
        second, _ = encrypt(b"same", "pw", rounds=1)
        assert first != second
        assert key_material(first) != key_material(second)

    def test_wrong_passphrase_raises(self):
        ciphertext, _ = encrypt(b"payload", "right", rounds=1)
        with pytest.raises(DecryptionError):
            decrypt(ciphertext, "wrong", rounds=1)

    def test_missing_passphrase_raises(self):
        ciphertext, _ = encrypt(b"payload", "right", rounds=1)
        with pytest.raises(DecryptionError):
            decrypt(ciphertext, None, rounds=1)

    def test_tampered_ciphertext_raises(self):
        ciphertext, _ = encrypt(b"payload", "right", rounds=1)
        tampered = bytearray(ciphertext)
        tampered[-1] ^= 0x01
        with pytest.raises(DecryptionError):
            decrypt(bytes(tampered), "right", rounds=1)

    def test_truncated_ciphertext_raises(self):
        with pytest.raises(DecryptionError):
            decrypt(b"short", "right", rounds=1)

    def test_nonce_mismatch_raises(self):
        ciphertext, _ = encrypt(b"payload", "right", rounds=1)
        with pytest.raises(DecryptionError):
            decrypt(ciphertext, "right", nonce=b"\x00" * 12, rounds=1)

    def test_key_material_is_hex(self):
        ciphertext, nonce = encrypt(b"payload", "pw", rounds=1)
        material = key_material(ciphertext)
        assert bytes.fromhex(material['nonce']) == nonce
        assert len(bytes.fromhex(material['salt'])) == 16


class TestKeyDerivation:
    """Test bcrypt-pbkdf key derivation."""

    def test_derived_key_is_32_bytes(self):
        assert len(derive_key("pw", b"\x01" * 16, rounds=1)) == 32

    def test_same_inputs_same_key(self):
        salt = b"\x02" * 16
        assert derive_key("pw", salt, rounds=1) == derive_key("pw", salt, rounds=1)

    def test_salt_changes_key(self):
        assert derive_key("pw", b"\x01" * 16, rounds=1) != derive_key("pw", b"\x02" * 16, rounds=1)

    def test_empty_passphrase_rejected(self):
        with pytest.raises(ValidationError):
            derive_key("", b"\x01" * 16, rounds=1)
