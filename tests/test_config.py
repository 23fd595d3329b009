import pytest

import esrepository.config as config_module
from esrepository.config import ConnectionConfig, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "ELASTICSEARCH_HOSTS", "ELASTICSEARCH_API_KEY", "ELASTICSEARCH_USERNAME",
        "ELASTICSEARCH_PASSWORD", "ELASTICSEARCH_VERIFY_CERTS", "ELASTICSEARCH_CA_CERTS",
        "ELASTICSEARCH_REQUEST_TIMEOUT", "ELASTICSEARCH_MAX_RETRIES",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    kwargs = ConnectionConfig().client_kwargs()

    assert kwargs["hosts"] == ["http://localhost:9200"]
    assert kwargs["verify_certs"] is True
    assert "api_key" not in kwargs
    assert "basic_auth" not in kwargs


def test_api_key_wins_over_basic_auth():
    kwargs = ConnectionConfig(api_key="k", basic_auth=("u", "p")).client_kwargs()

    assert kwargs["api_key"] == "k"
    assert "basic_auth" not in kwargs


def test_env_then_overrides(monkeypatch):
    monkeypatch.setenv("ELASTICSEARCH_HOSTS", "https://es1:9200, https://es2:9200")
    monkeypatch.setenv("ELASTICSEARCH_USERNAME", "elastic")
    monkeypatch.setenv("ELASTICSEARCH_PASSWORD", "secret")
    monkeypatch.setenv("ELASTICSEARCH_VERIFY_CERTS", "false")
    monkeypatch.setenv("ELASTICSEARCH_MAX_RETRIES", "7")

    cfg = load_config(request_timeout=30.0, hosts=None)

    assert cfg.hosts == ["https://es1:9200", "https://es2:9200"]
    assert cfg.basic_auth == ("elastic", "secret")
    assert cfg.verify_certs is False
    assert cfg.max_retries == 7
    assert cfg.request_timeout == 30.0


def test_unknown_override_rejected():
    with pytest.raises(TypeError):
        load_config(colour="blue")


def test_create_client_passes_kwargs(monkeypatch):
    captured = {}

    class DummyElasticsearch:
        def __init__(self, **kwargs):
            captured.update(kwargs)

    monkeypatch.setattr(config_module, "Elasticsearch", DummyElasticsearch)

    client = config_module.create_client(hosts=["http://es.local:9200"], api_key="abc")

    assert isinstance(client, DummyElasticsearch)
    assert captured["hosts"] == ["http://es.local:9200"]
    assert captured["api_key"] == "abc"


def test_create_async_client_uses_explicit_config(monkeypatch):
    captured = {}
    monkeypatch.setattr(config_module, "AsyncElasticsearch", lambda **kwargs: captured.update(kwargs))

    config_module.create_async_client(ConnectionConfig(hosts=["http://a:9200"], ca_certs="/tmp/ca.pem"))

    assert captured["hosts"] == ["http://a:9200"]
    assert captured["ca_certs"] == "/tmp/ca.pem"
