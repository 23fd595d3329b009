"""
esrepository Config — Connection Settings and Client Factories
==============================================================

Settings resolve in three layers (later wins):
    1. Dataclass defaults
    2. Environment variables (``ELASTICSEARCH_HOSTS``, etc.)
    3. Explicit keyword arguments

Supported env vars:
    - ELASTICSEARCH_HOSTS          comma-separated node URLs
    - ELASTICSEARCH_API_KEY
    - ELASTICSEARCH_USERNAME / ELASTICSEARCH_PASSWORD
    - ELASTICSEARCH_VERIFY_CERTS   "true"/"false"
    - ELASTICSEARCH_CA_CERTS
    - ELASTICSEARCH_REQUEST_TIMEOUT
    - ELASTICSEARCH_MAX_RETRIES
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from elasticsearch import AsyncElasticsearch, Elasticsearch

DEFAULT_HOSTS = ["http://localhost:9200"]


@dataclass
class ConnectionConfig:
    """Connection settings for an Elasticsearch cluster."""

    hosts: List[str] = field(default_factory=lambda: list(DEFAULT_HOSTS))
    api_key: Optional[str] = None
    basic_auth: Optional[Tuple[str, str]] = None
    verify_certs: bool = True
    ca_certs: Optional[str] = None
    request_timeout: float = 10.0
    max_retries: int = 3
    retry_on_timeout: bool = False

    def client_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for ``Elasticsearch`` / ``AsyncElasticsearch``."""
        kwargs: Dict[str, Any] = {
            "hosts": self.hosts or list(DEFAULT_HOSTS),
            "verify_certs": self.verify_certs,
            "request_timeout": self.request_timeout,
            "max_retries": self.max_retries,
            "retry_on_timeout": self.retry_on_timeout,
        }

        if self.api_key:
            kwargs["api_key"] = self.api_key
        elif self.basic_auth:
            kwargs["basic_auth"] = self.basic_auth

        if self.ca_certs:
            kwargs["ca_certs"] = self.ca_certs

        return kwargs


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(**overrides) -> ConnectionConfig:
    """Build a ConnectionConfig from env vars and keyword overrides."""
    cfg = ConnectionConfig()

    hosts = os.getenv("ELASTICSEARCH_HOSTS")
    if hosts:
        cfg.hosts = [h.strip() for h in hosts.split(",") if h.strip()]

    api_key = os.getenv("ELASTICSEARCH_API_KEY")
    if api_key:
        cfg.api_key = api_key

    username = os.getenv("ELASTICSEARCH_USERNAME")
    password = os.getenv("ELASTICSEARCH_PASSWORD")
    if username and password:
        cfg.basic_auth = (username, password)

    verify = os.getenv("ELASTICSEARCH_VERIFY_CERTS")
    if verify is not None:
        cfg.verify_certs = _env_bool(verify)

    ca_certs = os.getenv("ELASTICSEARCH_CA_CERTS")
    if ca_certs:
        cfg.ca_certs = ca_certs

    timeout = os.getenv("ELASTICSEARCH_REQUEST_TIMEOUT")
    if timeout:
        cfg.request_timeout = float(timeout)

    max_retries = os.getenv("ELASTICSEARCH_MAX_RETRIES")
    if max_retries:
        cfg.max_retries = int(max_retries)

    for key, value in overrides.items():
        if not hasattr(cfg, key):
            raise TypeError(f"Unknown config key: {key!r}")
        if value is not None:
            setattr(cfg, key, value)

    return cfg


def create_client(config: Optional[ConnectionConfig] = None, **overrides) -> Elasticsearch:
    """
    Create a synchronous Elasticsearch client.

    Args:
        config: Explicit settings. When None, one is built via
            :func:`load_config` from env vars and ``overrides``.

    Returns:
        Configured ``Elasticsearch`` client
    """
    if config is None:
        config = load_config(**overrides)
    return Elasticsearch(**config.client_kwargs())


def create_async_client(
    config: Optional[ConnectionConfig] = None, **overrides
) -> AsyncElasticsearch:
    """Create an ``AsyncElasticsearch`` client (same resolution as create_client)."""
    if config is None:
        config = load_config(**overrides)
    return AsyncElasticsearch(**config.client_kwargs())
