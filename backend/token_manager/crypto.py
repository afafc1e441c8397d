"""Encryption of Opal tokens at rest.

Tokens are sealed with AES-256 in CTR mode. The counter block is the first
16 bytes of the token name, so the same name always yields the same
keystream under a given key. Existing databases depend on this layout.
"""

import base64

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

KEY_SIZE = 32
NONCE_SIZE = 16


def adjust_key(key: str) -> bytes:
    """Truncate or zero-pad a configured key to 32 bytes."""
    raw = key.encode("utf-8")[:KEY_SIZE]
    return raw.ljust(KEY_SIZE, b"\0")


def nonce_for(token_name: str) -> bytes:
    nonce = token_name.encode("utf-8")[:NONCE_SIZE]
    if len(nonce) < NONCE_SIZE:
        raise ValueError(f"token name must be at least {NONCE_SIZE} bytes long")
    return nonce


class TokenCipher:
    """Symmetric stream cipher for token values."""

    def __init__(self, key: str) -> None:
        self._key = adjust_key(key)

    def _apply_keystream(self, data: bytes, token_name: str) -> bytes:
        encryptor = Cipher(algorithms.AES(self._key), modes.CTR(nonce_for(token_name))).encryptor()
        return encryptor.update(data) + encryptor.finalize()

    def encrypt(self, token: str, token_name: str) -> str:
        """Encrypt a token and return it base64 encoded."""
        sealed = self._apply_keystream(token.encode("utf-8"), token_name)
        return base64.b64encode(sealed).decode("ascii")

    def decrypt(self, encoded: str, token_name: str) -> str:
        sealed = base64.b64decode(encoded)
        return self._apply_keystream(sealed, token_name).decode("utf-8")
