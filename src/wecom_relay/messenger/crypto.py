"""WeCom callback signature and message encryption.

The platform signs every callback with SHA-1 over the sorted concatenation of
``token``, ``timestamp``, ``nonce`` and the (encrypted) payload, and encrypts
payloads with AES-256-CBC:

    key       = base64decode(EncodingAESKey + "=")      # 32 bytes
    iv        = key[:16]
    plaintext = random(16) | len(msg) as u32 big-endian | msg | receive_id
    padding   = PKCS#7 to a 32-byte block
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import os
import secrets
import string
import struct
from dataclasses import dataclass

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from wecom_relay.errors import ConfigError, DecryptError, SignatureMismatch

BLOCK_SIZE = 32
_RANDOM_PREFIX = 16
_LENGTH_FIELD = 4
_NONCE_ALPHABET = string.ascii_letters + string.digits


def compute_signature(token: str, timestamp: str, nonce: str, data: str) -> str:
    """Hex-lowercase SHA-1 of the lexicographically sorted parts."""
    raw = "".join(sorted([token, timestamp, nonce, data]))
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()


def decode_aes_key(encoding_aes_key: str) -> bytes:
    try:
        key = base64.b64decode(encoding_aes_key + "=", validate=True)
    except (binascii.Error, ValueError) as e:
        raise ConfigError(f"EncodingAESKey is not valid base64: {e}") from e
    if len(key) != 32:
        raise ConfigError(f"EncodingAESKey must decode to 32 bytes, got {len(key)}")
    return key


@dataclass(frozen=True, slots=True)
class DecryptedMessage:
    text: str
    receive_id: str


class WecomCrypto:
    """Signature checks and AES envelope for one (token, EncodingAESKey) pair."""

    def __init__(self, token: str, encoding_aes_key: str):
        self._token = token
        self._key = decode_aes_key(encoding_aes_key)
        self._iv = self._key[:16]

    def signature(self, timestamp: str, nonce: str, data: str) -> str:
        return compute_signature(self._token, timestamp, nonce, data)

    def verify(self, signature: str, timestamp: str, nonce: str, data: str) -> None:
        expected = self.signature(timestamp, nonce, data)
        if not hmac.compare_digest(expected, signature.lower()):
            raise SignatureMismatch("签名校验失败")

    def decrypt(self, ciphertext: str) -> DecryptedMessage:
        try:
            raw = base64.b64decode(ciphertext, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptError(f"密文不是有效的base64。{e}") from e
        if not raw or len(raw) % 16:
            raise DecryptError("密文长度无效")

        decryptor = Cipher(algorithms.AES(self._key), modes.CBC(self._iv)).decryptor()
        padded = decryptor.update(raw) + decryptor.finalize()
        try:
            unpadder = padding.PKCS7(BLOCK_SIZE * 8).unpadder()
            block = unpadder.update(padded) + unpadder.finalize()
        except ValueError as e:
            raise DecryptError(f"填充无效。{e}") from e

        header = _RANDOM_PREFIX + _LENGTH_FIELD
        if len(block) < header:
            raise DecryptError("明文过短")
        (msg_len,) = struct.unpack(">I", block[_RANDOM_PREFIX:header])
        if header + msg_len > len(block):
            raise DecryptError("消息长度字段越界")
        try:
            text = block[header : header + msg_len].decode("utf-8")
            receive_id = block[header + msg_len :].decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptError(f"明文不是有效的UTF-8。{e}") from e
        return DecryptedMessage(text=text, receive_id=receive_id)

    def encrypt(self, plaintext: str, receive_id: str) -> tuple[str, str]:
        """Encrypt *plaintext* and return ``(ciphertext, nonce)``.

        The nonce is a fresh random string for signing the encrypted payload.
        """
        msg = plaintext.encode("utf-8")
        block = (
            os.urandom(_RANDOM_PREFIX)
            + struct.pack(">I", len(msg))
            + msg
            + receive_id.encode("utf-8")
        )
        padder = padding.PKCS7(BLOCK_SIZE * 8).padder()
        padded = padder.update(block) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(self._iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        nonce = "".join(secrets.choice(_NONCE_ALPHABET) for _ in range(16))
        return base64.b64encode(ciphertext).decode("ascii"), nonce

    def verify_and_decrypt(self, signature: str, timestamp: str, nonce: str, ciphertext: str) -> str:
        """Check the signature over *ciphertext* and return the decrypted text."""
        self.verify(signature, timestamp, nonce, ciphertext)
        return self.decrypt(ciphertext).text
