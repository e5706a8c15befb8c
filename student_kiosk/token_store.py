from __future__ import annotations

import json
import threading
from pathlib import Path

from .schemas import TokenPair


class TokenStore:
    """Access/refresh token pair persisted as JSON in the kiosk state directory."""

    def __init__(self, path: Path | str | None = None) -> None:
        self.path = Path(path) if path is not None else None
        self._lock = threading.Lock()
        self._tokens: TokenPair | None = None
        if self.path is not None:
            self._tokens = self._read()

    def _read(self) -> TokenPair | None:
        if self.path is None or not self.path.exists():
            return None
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
            return TokenPair.model_validate(payload)
        except (OSError, ValueError):
            return None

    def _write(self) -> None:
        if self.path is None:
            return
        if self._tokens is None:
            self.path.unlink(missing_ok=True)
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(self._tokens.model_dump_json(), encoding="utf-8")

    @property
    def access_token(self) -> str | None:
        with self._lock:
            return self._tokens.access_token if self._tokens else None

    @property
    def refresh_token(self) -> str | None:
        with self._lock:
            return self._tokens.refresh_token if self._tokens else None

    @property
    def authenticated(self) -> bool:
        return self.access_token is not None

    def save(self, tokens: TokenPair) -> None:
        with self._lock:
            self._tokens = tokens
            self._write()

    def update_access_token(self, access_token: str) -> None:
        with self._lock:
            refresh = self._tokens.refresh_token if self._tokens else None
            self._tokens = TokenPair(access_token=access_token, refresh_token=refresh)
            self._write()

    def clear(self) -> None:
        with self._lock:
            self._tokens = None
            self._write()
