import io

import pytest

from bkpack.encrypt import (
    IV_SIZE,
    KEY_SIZE,
    SALT_SIZE,
    SHA256_SIZE,
    decrypt_stream,
    derive_key,
    encrypt_stream,
    file_sha256,
    hash_to_hex,
)
from bkpack.errors import BackupError, ErrorCode


def _encrypt(data: bytes, password: str) -> bytes:
    out = io.BytesIO()
    encrypt_stream(io.BytesIO(data), out, password)
    return out.getvalue()


def test_derive_key_is_deterministic_and_sized():
    salt = bytes(range(SALT_SIZE))
    first = derive_key("password", salt)
    assert len(first) == KEY_SIZE
    assert derive_key("password", salt) == first


def test_derive_key_depends_on_salt_and_password():
    salt = bytes(range(SALT_SIZE))
    other_salt = bytes(reversed(range(SALT_SIZE)))
    base = derive_key("password", salt)
    assert derive_key("password", other_salt) != base
    assert derive_key("secret", salt) != base


@pytest.mark.parametrize("size", [0, 1, 15, 16, 17, 1024, 1025, 5000])
def test_round_trip(size):
    data = bytes((i * 7) % 256 for i in range(size))
    encrypted = _encrypt(data, "password")
    body = len(encrypted) - SALT_SIZE - IV_SIZE
    assert body % 16 == 0
    assert body > size
    out = io.BytesIO()
    decrypt_stream(io.BytesIO(encrypted), out, "password")
    assert out.getvalue() == data


def test_ciphertext_hides_plaintext_and_uses_fresh_salt():
    data = b"plain text " * 20
    first = _encrypt(data, "password")
    second = _encrypt(data, "password")
    assert data not in first
    assert first[:SALT_SIZE] != second[:SALT_SIZE]
    assert first != second


def test_wrong_password_does_not_recover_data():
    data = b"some confidential content" * 10
    encrypted = _encrypt(data, "password")
    out = io.BytesIO()
    try:
        decrypt_stream(io.BytesIO(encrypted), out, "secret")
    except BackupError as exc:
        assert exc.code == ErrorCode.PASSWORD_ERROR
    else:
        assert out.getvalue() != data


def test_truncated_ciphertext_raises_password_error():
    encrypted = _encrypt(b"x" * 100, "password")
    with pytest.raises(BackupError) as info:
        decrypt_stream(io.BytesIO(encrypted[:-5]), io.BytesIO(), "password")
    assert info.value.code == ErrorCode.PASSWORD_ERROR


def test_missing_header_raises_format_error():
    with pytest.raises(BackupError) as info:
        decrypt_stream(io.BytesIO(b"short"), io.BytesIO(), "password")
    assert info.value.code == ErrorCode.FORMAT_ERROR


def test_sha256_of_empty_stream():
    digest = file_sha256(io.BytesIO(b""))
    assert len(digest) == SHA256_SIZE
    assert hash_to_hex(digest) == (
        "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
    )


def test_sha256_of_abc():
    assert hash_to_hex(file_sha256(io.BytesIO(b"abc"))) == (
        "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    )


def test_sha256_is_chunk_independent():
    data = bytes(range(256)) * 100
    stream = io.BytesIO(b"skip" + data)
    stream.read(4)
    assert file_sha256(stream) == file_sha256(io.BytesIO(data))


def test_hash_to_hex_pads_bytes():
    assert hash_to_hex(bytes([0, 1, 255])) == "0001ff"
    assert hash_to_hex(b"") == ""