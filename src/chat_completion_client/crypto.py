from __future__ import annotations

from cryptography.fernet import Fernet, InvalidToken


def generate_key() -> str:
    return Fernet.generate_key().decode("utf-8")


def fernet_from_key_str(key_str: str) -> Fernet:
    return Fernet(key_str.encode("utf-8"))


def encrypt_text(fernet: Fernet, text: str) -> str:
    return fernet.encrypt(text.encode("utf-8")).decode("ascii")


def decrypt_text(fernet: Fernet, token: str) -> str:
    try:
        return fernet.decrypt(token.encode("ascii")).decode("utf-8")
    except InvalidToken as e:
        raise ValueError("Failed to decrypt cache entry (wrong key or corrupted file).") from e
