"""Tests for configuration loading."""

from nexusflow.config import load_config
from nexusflow.transports import get_transport
from nexusflow.transports.redis import RedisTransport


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "nexusflow.yaml"
    config_path.write_text(
        """
transport:
  backend: redis
  redis:
    host: testhost
    port: 1234
executor:
  retry_backoff_base: 2
  max_step_transitions: 50
destinations:
  database:
    3: sqlite+aiosqlite:///dest.db
  rest:
    5:
      base_url: https://api.example.com
      headers:
        X-Key: abc
log_level: debug
"""
    )
    monkeypatch.setenv("NEXUSFLOW_CONFIG", str(config_path))
    monkeypatch.delenv("NEXUSFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    config = load_config()
    assert config.transport.backend == "redis"
    assert config.transport.redis.host == "testhost"
    assert config.transport.redis.port == 1234
    assert config.executor.retry_backoff_base == 2.0
    assert config.executor.max_step_transitions == 50
    assert config.destinations.database[3] == "sqlite+aiosqlite:///dest.db"
    assert config.destinations.rest[5].method == "POST"
    assert config.destinations.rest[5].headers == {"X-Key": "abc"}
    assert config.log_level == "debug"
    assert config.database_url is None


def test_database_url_env_override(tmp_path, monkeypatch):
    monkeypatch.setenv("NEXUSFLOW_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.delenv("NEXUSFLOW_DATABASE_URL", raising=False)
    monkeypatch.setenv("DATABASE_URL", "sqlite:///logs.db")

    config = load_config()
    assert config.transport.backend == "inmemory"
    assert config.database_url == "sqlite:///logs.db"


def test_get_transport_uses_config(tmp_path, monkeypatch):
    config_path = tmp_path / "nexusflow.yaml"
    config_path.write_text(
        """
transport:
  backend: redis
  redis:
    host: confighost
    port: 6380
"""
    )
    monkeypatch.setenv("NEXUSFLOW_CONFIG", str(config_path))
    monkeypatch.delenv("NEXUSFLOW_TRANSPORT", raising=False)

    transport = get_transport()
    assert isinstance(transport, RedisTransport)
    assert transport.host == "confighost"
    assert transport.port == 6380
