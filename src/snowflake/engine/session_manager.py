#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#

from __future__ import annotations

import abc
import collections
import contextlib
import hashlib
import itertools
import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Generator
from urllib.parse import urlparse

import requests
from requests import Session
from requests.adapters import BaseAdapter, HTTPAdapter
from requests.utils import should_bypass_proxies
from urllib3 import Retry

from .proxy import get_proxy_url

logger = logging.getLogger(__name__)
REQUESTS_RETRY = 1  # requests library builtin retry


class ProxySupportAdapter(HTTPAdapter):
    """This Adapter skips the configured proxy for hosts on the no-proxy list."""

    def __init__(self, *args, no_proxy: str | None = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._no_proxy = no_proxy

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        if (
            proxies
            and self._no_proxy
            and should_bypass_proxies(request.url, no_proxy=self._no_proxy)
        ):
            logger.debug("bypassing proxy for %s", urlparse(request.url).hostname)
            proxies = {}
        return super().send(
            request,
            stream=stream,
            timeout=timeout,
            verify=verify,
            cert=cert,
            proxies=proxies,
        )


class AdapterFactory(abc.ABC):
    @abc.abstractmethod
    def __call__(self, *args, **kwargs) -> BaseAdapter:
        raise NotImplementedError()


class ProxySupportAdapterFactory(AdapterFactory):
    def __call__(self, *args, **kwargs) -> ProxySupportAdapter:
        return ProxySupportAdapter(*args, **kwargs)


@dataclass(frozen=True)
class HttpConfig:
    """Immutable HTTP configuration shared by SessionManager instances."""

    adapter_factory: Callable[..., HTTPAdapter] = field(
        default_factory=ProxySupportAdapterFactory, compare=False
    )
    use_pooling: bool = True
    max_retries: int | Retry | None = REQUESTS_RETRY
    proxy_host: str | None = None
    proxy_port: str | None = None
    proxy_user: str | None = None
    proxy_password: str | None = None
    no_proxy: str | None = None
    insecure_mode: bool = False

    def copy_with(self, **overrides: Any) -> HttpConfig:
        """Return a new HttpConfig with overrides applied."""
        return replace(self, **overrides)

    def config_key(self) -> str:
        """Stable hash of the effective network configuration."""
        material = "|".join(
            str(v)
            for v in (
                self.proxy_host,
                self.proxy_port,
                self.proxy_user,
                self.proxy_password,
                self.no_proxy,
                self.insecure_mode,
                self.use_pooling,
                self.max_retries,
            )
        )
        return hashlib.sha256(material.encode("utf-8")).hexdigest()

    def get_adapter(self, **override_adapter_factory_kwargs) -> HTTPAdapter:
        adapter_kwargs = {
            "max_retries": self.max_retries,
            "no_proxy": self.no_proxy,
        }
        adapter_kwargs.update(override_adapter_factory_kwargs)
        return self.adapter_factory(**adapter_kwargs)


class SessionPool:
    """
    Component responsible for storing and reusing established instances of requests.Session class.

    Sessions are created using the factory method make_session of a passed instance of the
    SessionManager class. Chunk downloads for the same storage host share a pool.
    """

    def __init__(self, manager: SessionManager) -> None:
        # A stack of the idle sessions
        self._idle_sessions: list[Session] = []
        self._active_sessions: set[Session] = set()
        self._manager = manager
        self._lock = threading.Lock()

    def get_session(self) -> Session:
        """Returns a session from the session pool or creates a new one."""
        with self._lock:
            try:
                session = self._idle_sessions.pop()
            except IndexError:
                session = self._manager.make_session()
            self._active_sessions.add(session)
        return session

    def return_session(self, session: Session) -> None:
        """Places an active session back into the idle session stack."""
        with self._lock:
            try:
                self._active_sessions.remove(session)
            except KeyError:
                logger.debug(
                    "session doesn't exist in the active session pool. Ignored..."
                )
            self._idle_sessions.append(session)

    def __str__(self) -> str:
        total_sessions = len(self._active_sessions) + len(self._idle_sessions)
        return (
            f"SessionPool {len(self._active_sessions)}/{total_sessions} active sessions"
        )

    def close(self) -> None:
        """Closes all active and idle sessions in this session pool."""
        with self._lock:
            if self._active_sessions:
                logger.debug(f"Closing {len(self._active_sessions)} active sessions")
            for session in itertools.chain(self._active_sessions, self._idle_sessions):
                try:
                    session.close()
                except Exception as e:
                    logger.info(f"Session cleanup failed - failed to close session: {e}")
            self._active_sessions.clear()
            self._idle_sessions.clear()


class SessionManager:
    """
    Owns the ``requests.Session`` objects used for one network configuration.

    With ``use_pooling=False`` every request gets a one-shot session. With pooling,
    sessions are kept in per-hostname pools so that repeated requests to the same
    host reuse their TCP and TLS connections.
    """

    def __init__(self, config: HttpConfig | None = None, **http_config_kwargs) -> None:
        if config is None:
            logger.debug("Creating a config for the SessionManager")
            config = HttpConfig(**http_config_kwargs)
        self._cfg: HttpConfig = config
        self._sessions_map: dict[str | None, SessionPool] = collections.defaultdict(
            lambda: SessionPool(self)
        )
        self._map_lock = threading.Lock()

    @property
    def config(self) -> HttpConfig:
        return self._cfg

    @property
    def proxy_url(self) -> str | None:
        return get_proxy_url(
            self._cfg.proxy_host,
            self._cfg.proxy_port,
            self._cfg.proxy_user,
            self._cfg.proxy_password,
        )

    @property
    def sessions_map(self) -> dict[str | None, SessionPool]:
        return self._sessions_map

    def _mount_adapters(self, session: requests.Session) -> None:
        try:
            # each session gets its own adapter, adapters hold their PoolManager
            adapter = self._cfg.get_adapter()
            if adapter is not None:
                session.mount("http://", adapter)
                session.mount("https://", adapter)
        except (TypeError, AttributeError) as no_adapter_factory_exception:
            logger.info(
                "No adapter factory found. Using session without adapter. Exception: %s",
                no_adapter_factory_exception,
            )

    def make_session(self) -> Session:
        session = requests.Session()
        self._mount_adapters(session)
        proxy_url = self.proxy_url
        if proxy_url:
            session.proxies = {"http": proxy_url, "https": proxy_url}
        if self._cfg.insecure_mode:
            logger.warning("insecure mode is enabled, certificates are not verified")
            session.verify = False
        return session

    @contextlib.contextmanager
    def use_requests_session(
        self, url: str | None = None, use_pooling: bool | None = None
    ) -> Generator[Session, Any, None]:
        use_pooling = use_pooling if use_pooling is not None else self._cfg.use_pooling
        if not use_pooling:
            session = self.make_session()
            try:
                yield session
            finally:
                session.close()
        else:
            hostname = urlparse(url).hostname if url else None
            with self._map_lock:
                pool = self._sessions_map[hostname]
            session = pool.get_session()
            try:
                yield session
            finally:
                pool.return_session(session)

    def close(self) -> None:
        with self._map_lock:
            pools = list(self._sessions_map.values())
        for pool in pools:
            pool.close()


class HttpClientRegistry:
    """Process-wide registry holding one SessionManager per network configuration.

    Managers are built on first use and keyed by ``HttpConfig.config_key()``,
    so sessions with the same proxy and TLS settings share their connection pools.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._managers: dict[str, SessionManager] = {}

    def get(self, config: HttpConfig) -> SessionManager:
        key = config.config_key()
        with self._lock:
            manager = self._managers.get(key)
            if manager is None:
                logger.debug("creating http client for config key %s", key[:12])
                manager = SessionManager(config=config)
                self._managers[key] = manager
            return manager

    def __len__(self) -> int:
        with self._lock:
            return len(self._managers)

    def __contains__(self, config: HttpConfig) -> bool:
        with self._lock:
            return config.config_key() in self._managers

    def close(self) -> None:
        with self._lock:
            managers = list(self._managers.values())
            self._managers.clear()
        for manager in managers:
            manager.close()


HTTP_CLIENT_REGISTRY = HttpClientRegistry()
