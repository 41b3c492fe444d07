"""
Server-side storage for the provider API key.

The key never leaves the server: HTTP handlers only ever see
`is_configured()` and the rotation metadata. When a path and a Fernet key
are configured the payload is encrypted at rest; otherwise it lives in
process memory only.
"""

from __future__ import annotations

import hashlib
import json
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import structlog
from cryptography.fernet import Fernet, InvalidToken

from .errors import ConfigurationError, InvalidRequestError
from .providers.base import ApiCredentials

log = structlog.get_logger()

KEY_PREFIX = "sk-"
MIN_KEY_LENGTH = 20
CONFIGURED_COOKIE = "openai_key_configured"


def validate_api_key_format(api_key: Any) -> str:
    if not isinstance(api_key, str):
        raise InvalidRequestError("Invalid API key format")
    key = api_key.strip()
    if len(key) < MIN_KEY_LENGTH or not key.startswith(KEY_PREFIX):
        raise InvalidRequestError("Invalid API key format")
    return key


def key_fingerprint(api_key: str) -> str:
    return "sha256:" + hashlib.sha256(api_key.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class KeyMetadata:
    last_rotated: datetime
    expires_at: datetime
    key_hash: str

    def to_dict(self) -> dict[str, str]:
        return {
            "lastRotated": self.last_rotated.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
            "keyHash": self.key_hash,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "KeyMetadata":
        return cls(
            last_rotated=datetime.fromisoformat(data["lastRotated"]),
            expires_at=datetime.fromisoformat(data["expiresAt"]),
            key_hash=str(data["keyHash"]),
        )


class ApiKeyStore:
    def __init__(
        self,
        path: str | None = None,
        fernet_key: str | None = None,
        *,
        fallback: ApiCredentials | None = None,
        rotation_days: int = 30,
        clock: Callable[[], datetime] | None = None,
    ):
        self._path = Path(path) if path else None
        self._fernet = Fernet(fernet_key.encode("utf-8")) if fernet_key else None
        self._fallback = fallback
        self._rotation = timedelta(days=max(1, rotation_days))
        self._clock: Callable[[], datetime] = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._creds: ApiCredentials | None = None
        self._metadata: KeyMetadata | None = None

        if self._path is not None and self._fernet is None:
            log.warning("key_store_memory_only", reason="KEY_STORE_FERNET_KEY not set; refusing plaintext at rest")
        if self._persistent and self._path.exists():
            self._load()

    @property
    def _persistent(self) -> bool:
        return self._path is not None and self._fernet is not None

    def _load(self) -> None:
        assert self._path is not None and self._fernet is not None
        try:
            raw = self._fernet.decrypt(self._path.read_bytes())
        except InvalidToken as e:
            raise ConfigurationError("Failed to decrypt key store (wrong key or corrupted file).") from e
        payload = json.loads(raw.decode("utf-8"))
        if not isinstance(payload, dict) or not payload.get("apiKey"):
            raise ConfigurationError("Key store payload must be a JSON object with an apiKey.")
        self._creds = ApiCredentials(api_key=payload["apiKey"], org_id=payload.get("orgId"))
        if isinstance(payload.get("metadata"), dict):
            self._metadata = KeyMetadata.from_dict(payload["metadata"])

    def _persist(self) -> None:
        if not self._persistent:
            return
        assert self._path is not None and self._fernet is not None
        if self._creds is None:
            self._path.unlink(missing_ok=True)
            return
        payload = {
            "apiKey": self._creds.api_key,
            "orgId": self._creds.org_id,
            "metadata": self._metadata.to_dict() if self._metadata else None,
        }
        self._path.write_bytes(self._fernet.encrypt(json.dumps(payload).encode("utf-8")))

    def set_key(self, api_key: str, org_id: str | None = None, *, now: datetime | None = None) -> KeyMetadata:
        key = validate_api_key_format(api_key)
        org = org_id.strip() if isinstance(org_id, str) and org_id.strip() else None
        now = now or self._clock()
        metadata = KeyMetadata(last_rotated=now, expires_at=now + self._rotation, key_hash=key_fingerprint(key))
        with self._lock:
            self._creds = ApiCredentials(api_key=key, org_id=org)
            self._metadata = metadata
            self._persist()
        log.info("api_key_configured", key_hash=metadata.key_hash, has_org=org is not None)
        return metadata

    def credentials(self) -> ApiCredentials | None:
        with self._lock:
            return self._creds or self._fallback

    def metadata(self) -> KeyMetadata | None:
        with self._lock:
            return self._metadata

    def is_configured(self) -> bool:
        return self.credentials() is not None

    def needs_rotation(self, now: datetime | None = None) -> bool:
        metadata = self.metadata()
        if metadata is None:
            return False
        return (now or self._clock()) > metadata.expires_at

    def clear(self) -> None:
        with self._lock:
            self._creds = None
            self._metadata = None
            self._persist()
        log.info("api_key_cleared")
