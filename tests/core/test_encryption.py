"""
Tests for credential encryption at rest.

Gateway keys are stored Fernet-encrypted; a ciphertext that does not decrypt
with the current key reads as "not configured" rather than raising.
"""

import pytest
from cryptography.fernet import Fernet
from hypothesis import given, settings, strategies as st

from storefront.core.encryption import (
    _derive_key,
    decrypt_credential,
    encrypt_credential,
    mask_credential,
)

credential_strategy = st.text(
    alphabet=st.characters(whitelist_categories=("L", "N", "P")),
    min_size=1,
    max_size=128,
)


class TestCredentialEncryption:

    @given(credential=credential_strategy)
    @settings(max_examples=100)
    def test_round_trip(self, credential: str):
        encrypted = encrypt_credential(credential)

        assert encrypted != credential
        assert decrypt_credential(encrypted) == credential

    @given(credential=credential_strategy)
    @settings(max_examples=50)
    def test_ciphertext_is_randomized(self, credential: str):
        """Encrypting the same value twice yields different ciphertexts."""
        assert encrypt_credential(credential) != encrypt_credential(credential)

    def test_empty_plaintext_rejected(self):
        with pytest.raises(ValueError):
            encrypt_credential("")

    @pytest.mark.parametrize("ciphertext", [None, ""])
    def test_nothing_to_decrypt(self, ciphertext):
        assert decrypt_credential(ciphertext) is None

    def test_foreign_key_reads_as_missing(self):
        foreign = Fernet(_derive_key("another-deployment-key")).encrypt(b"SB-Mid-server-abc").decode()

        assert decrypt_credential(foreign) is None

    def test_garbage_reads_as_missing(self):
        assert decrypt_credential("not-a-token") is None

    def test_derived_key_is_valid_fernet_key(self):
        Fernet(_derive_key("short"))


class TestMaskCredential:

    @given(credential=st.text(min_size=5, max_size=80))
    @settings(max_examples=100)
    def test_only_last_four_visible(self, credential: str):
        masked = mask_credential(credential)

        assert len(masked) == len(credential)
        assert masked.endswith(credential[-4:])
        assert set(masked[:-4]) <= {"*"}

    @pytest.mark.parametrize("value,expected", [
        (None, ""),
        ("", ""),
        ("abc", "***"),
        ("abcd", "****"),
    ])
    def test_short_values_fully_masked(self, value, expected):
        assert mask_credential(value) == expected
