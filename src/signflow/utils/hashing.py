import hashlib
from typing import BinaryIO

CHUNK_SIZE = 64 * 1024


def sha256_hex_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_hex_text(text: str) -> str:
    return sha256_hex_bytes(text.encode("utf-8"))


def sha256_hex_stream(stream: BinaryIO, chunk_size: int = CHUNK_SIZE) -> str:
    digest = hashlib.sha256()
    for chunk in iter(lambda: stream.read(chunk_size), b""):
        digest.update(chunk)
    return digest.hexdigest()
