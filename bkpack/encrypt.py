"""Password based AES-256-CBC stream encryption and SHA-256 hashing."""

from __future__ import annotations

import hashlib
import os
from functools import partial
from typing import BinaryIO

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .errors import BackupError, ErrorCode

RETRY_COUNT = 10000
SHA256_SIZE = 32
SALT_SIZE = 16
IV_SIZE = 16
KEY_SIZE = 32

_CHUNK = 1024
_HASH_CHUNK = 4096


def _password_bytes(password: str | bytes) -> bytes:
    if isinstance(password, bytes):
        return password
    return password.encode("utf-8")


def derive_key(password: str | bytes, salt: bytes) -> bytes:
    """Derive a 256-bit AES key from a password with PBKDF2-HMAC-SHA256."""
    return hashlib.pbkdf2_hmac(
        "sha256", _password_bytes(password), salt, RETRY_COUNT, KEY_SIZE
    )


def encrypt_stream(src: BinaryIO, dest: BinaryIO, password: str | bytes) -> None:
    """Encrypt src into dest; dest starts with the random salt and IV."""
    salt = os.urandom(SALT_SIZE)
    iv = os.urandom(IV_SIZE)
    dest.write(salt)
    dest.write(iv)
    key = derive_key(password, salt)
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    for chunk in iter(partial(src.read, _CHUNK), b""):
        dest.write(encryptor.update(padder.update(chunk)))
    dest.write(encryptor.update(padder.finalize()) + encryptor.finalize())


def decrypt_stream(src: BinaryIO, dest: BinaryIO, password: str | bytes) -> None:
    """Decrypt a stream written by :func:`encrypt_stream` into dest.

    Raises BackupError with PASSWORD_ERROR when the password is wrong or the
    data is damaged, and FORMAT_ERROR when the salt and IV are missing.
    """
    salt = src.read(SALT_SIZE)
    iv = src.read(IV_SIZE)
    if len(salt) != SALT_SIZE or len(iv) != IV_SIZE:
        raise BackupError(ErrorCode.FORMAT_ERROR, "加密文件格式错误")
    key = derive_key(password, salt)
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    try:
        for chunk in iter(partial(src.read, _CHUNK), b""):
            dest.write(unpadder.update(decryptor.update(chunk)))
        dest.write(unpadder.update(decryptor.finalize()) + unpadder.finalize())
    except ValueError as exc:
        raise BackupError(ErrorCode.PASSWORD_ERROR, "密码错误或文件已损坏") from exc


def file_sha256(stream: BinaryIO) -> bytes:
    """Return the SHA-256 digest of the rest of a binary stream."""
    digest = hashlib.sha256()
    for chunk in iter(partial(stream.read, _HASH_CHUNK), b""):
        digest.update(chunk)
    return digest.digest()


def hash_to_hex(digest: bytes) -> str:
    """Render a digest as lower case hexadecimal."""
    return bytes(digest).hex()