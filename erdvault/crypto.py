import json
import logging

from cryptography.fernet import Fernet, InvalidToken

from .errors import DecryptionFailed

logger = logging.getLogger("ERDVault")


def generate_key():
    """Fresh 256-bit Fernet key (signing + encryption halves), urlsafe base64 text."""
    return Fernet.generate_key().decode("ascii")


class CryptoEnvelope:
    """Symmetric encrypt/decrypt of JSON-serializable payloads with one key."""

    def __init__(self, key):
        if isinstance(key, str):
            key = key.encode("ascii", "ignore")
        try:
            self._fernet = Fernet(key)
        except (TypeError, ValueError) as exc:
            raise DecryptionFailed(f"encryption key is malformed: {exc}") from exc

    def encrypt(self, obj):
        raw = json.dumps(obj, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
        return self._fernet.encrypt(raw).decode("ascii")

    def decrypt(self, token):
        if isinstance(token, str):
            token = token.encode("ascii", "ignore")
        if not token:
            raise DecryptionFailed("encrypted payload is empty")
        try:
            raw = self._fernet.decrypt(token)
        except (InvalidToken, TypeError, ValueError) as exc:
            raise DecryptionFailed("payload cannot be decrypted with the current key") from exc
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise DecryptionFailed(f"decrypted payload is not valid JSON: {exc}") from exc
