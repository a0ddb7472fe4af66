"""Kite session holder: credentials, lazy client construction, auth state.

Credentials are read from `KITE_API_KEY` / `KITE_ACCESS_TOKEN` (a `.env`
file is loaded by the config loader beforehand). The broker login handshake
is out of scope. After a rejected token the session stays disabled until a
different access token shows up: `reload_from_env` re-reads the process
environment and the `.env` file (the file wins, since a running process
cannot have its environment changed from outside), or one is pushed in with
`update_credentials`.
"""
from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable, Mapping
from typing import Any

from dotenv import dotenv_values, find_dotenv

from circuitwatch.utils.env_flags import is_truthy_env

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, str], Any]


def credential_sources() -> dict[str, str]:
    """Process environment overlaid with the current `.env` file (unless CW_SKIP_DOTENV)."""
    merged = dict(os.environ)
    if not is_truthy_env("CW_SKIP_DOTENV"):
        path = find_dotenv(usecwd=True)
        if path:
            merged.update({k: v for k, v in dotenv_values(path).items() if v})
    return merged


def _kiteconnect_factory(api_key: str, access_token: str) -> Any:
    from kiteconnect import KiteConnect

    kc = KiteConnect(api_key=api_key)
    kc.set_access_token(access_token)
    return kc


class AuthState:
    """Refresh bookkeeping (attempts, last error)."""
    __slots__ = ("failed", "refresh_attempts", "last_error")

    def __init__(self) -> None:
        self.failed = False
        self.refresh_attempts = 0
        self.last_error: str | None = None

    def record_error(self, exc: BaseException) -> None:
        self.failed = True
        self.last_error = str(exc)


class KiteSession:
    def __init__(self, api_key: str | None, access_token: str | None,
                 client_factory: ClientFactory | None = None):
        self._api_key = (api_key or "").strip() or None
        self._access_token = (access_token or "").strip() or None
        self._factory = client_factory or _kiteconnect_factory
        self._client: Any | None = None
        self._lock = threading.Lock()
        self.auth = AuthState()

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None,
                 client_factory: ClientFactory | None = None) -> KiteSession:
        e = os.environ if env is None else env
        return cls(e.get("KITE_API_KEY"), e.get("KITE_ACCESS_TOKEN"), client_factory)

    def has_credential(self) -> bool:
        return bool(self._api_key and self._access_token) and not self.auth.failed

    def client(self) -> Any:
        """Return the (lazily built) client. Raises RuntimeError without a usable credential."""
        with self._lock:
            if self._client is not None:
                return self._client
            if not (self._api_key and self._access_token):
                raise RuntimeError("kite_credentials_missing")
            if self.auth.failed:
                raise RuntimeError("kite_auth_failed")
            self._client = self._factory(self._api_key, self._access_token)
            logger.info("kite_client_initialized")
            return self._client

    def mark_auth_failed(self, exc: BaseException) -> None:
        with self._lock:
            self.auth.record_error(exc)
            self._client = None
        logger.error("kite_auth_failed err=%s; set a fresh KITE_ACCESS_TOKEN", exc)

    def update_credentials(self, api_key: str | None = None, access_token: str | None = None) -> None:
        with self._lock:
            if api_key:
                self._api_key = api_key.strip()
            if access_token:
                self._access_token = access_token.strip()
            self.auth.failed = False
            self.auth.refresh_attempts += 1
            self._client = None
        logger.info("kite_credentials_updated attempts=%d", self.auth.refresh_attempts)

    def reload_from_env(self, env: Mapping[str, str] | None = None) -> bool:
        """Pick up a rotated access token from the environment; True when it changed."""
        e = credential_sources() if env is None else env
        token = (e.get("KITE_ACCESS_TOKEN") or "").strip()
        if token and token != self._access_token:
            self.update_credentials(e.get("KITE_API_KEY"), token)
            return True
        return False


__all__ = ["KiteSession", "AuthState", "ClientFactory", "credential_sources"]
