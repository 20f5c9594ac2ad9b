import hashlib
import os
import uuid


def read_bytes(path: str) -> bytes:
    with open(path, "rb") as fh:
        return fh.read()


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def save_upload(storage_dir: str, field: str, filename: str, content: bytes) -> str:
    os.makedirs(storage_dir, exist_ok=True)
    ext = os.path.splitext(filename)[1] or ".pdf"
    path = os.path.join(storage_dir, f"{field}-{uuid.uuid4().hex}{ext}")
    with open(path, "wb") as out:
        out.write(content)
    return path
