"""Tests for device credential encryption."""

import pytest

from linkwatch.services.crypto import TOKEN_PREFIX, CryptoService


@pytest.fixture(scope="module")
def crypto():
    return CryptoService("test-credential-key")


class TestCryptoService:
    def test_round_trip(self, crypto):
        token = crypto.encrypt("router-password")

        assert token.startswith(TOKEN_PREFIX)
        assert "router-password" not in token
        assert crypto.decrypt(token) == "router-password"

    def test_nonce_is_random(self, crypto):
        assert crypto.encrypt("same") != crypto.encrypt("same")

    def test_legacy_plaintext_passes_through(self, crypto):
        assert crypto.decrypt("plain-old-password") == "plain-old-password"

    def test_empty_values(self, crypto):
        assert crypto.encrypt("") == ""
        assert crypto.decrypt(None) == ""

    def test_wrong_key_rejected(self, crypto):
        token = CryptoService("some-other-key").encrypt("secret")

        with pytest.raises(ValueError):
            crypto.decrypt(token)

    def test_corrupt_token_rejected(self, crypto):
        with pytest.raises(ValueError):
            crypto.decrypt(TOKEN_PREFIX + "!!not-base64!!")
