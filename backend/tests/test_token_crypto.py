"""
Tests for token encryption at rest.
"""
import base64

import pytest

from token_manager.crypto import KEY_SIZE, TokenCipher, adjust_key, nonce_for

TOKEN_NAME = "0f6a7c1e-5b8d-4e33-9a0e-1d2c3b4a5f60"


def test_short_key_is_zero_padded():
    key = adjust_key("abc")

    assert len(key) == KEY_SIZE
    assert key == b"abc" + b"\0" * (KEY_SIZE - 3)


def test_long_key_is_truncated():
    assert adjust_key("k" * 40) == b"k" * KEY_SIZE


def test_nonce_is_token_name_prefix():
    assert nonce_for(TOKEN_NAME) == TOKEN_NAME.encode()[:16]


def test_short_token_name_rejected():
    with pytest.raises(ValueError):
        nonce_for("too-short")


def test_decrypt_restores_token():
    cipher = TokenCipher("0123456789abcdef0123456789ABCDEF")

    sealed = cipher.encrypt("opal-token-value", TOKEN_NAME)

    assert sealed != "opal-token-value"
    assert cipher.decrypt(sealed, TOKEN_NAME) == "opal-token-value"


def test_ciphertext_is_standard_base64_of_same_length():
    sealed = TokenCipher("key").encrypt("abcdefgh", TOKEN_NAME)

    assert len(base64.b64decode(sealed)) == len("abcdefgh")


def test_same_name_gives_same_ciphertext():
    cipher = TokenCipher("key")

    assert cipher.encrypt("opal-token", TOKEN_NAME) == cipher.encrypt("opal-token", TOKEN_NAME)
    assert cipher.encrypt("opal-token", TOKEN_NAME) != cipher.encrypt("opal-token", TOKEN_NAME[::-1])


def test_key_changes_ciphertext():
    assert TokenCipher("key-one").encrypt("opal-token-value", TOKEN_NAME) != TokenCipher("key-two").encrypt(
        "opal-token-value", TOKEN_NAME
    )
