import pytest
from typer.testing import CliRunner

from server.config import RelayConfig, load_config


def test_defaults_without_file_or_env():
    cfg = load_config(env={})
    assert cfg == RelayConfig()
    assert cfg.port == 5050
    assert cfg.ping_interval == 30.0


def test_yaml_relay_section(tmp_path):
    path = tmp_path / "relay.yaml"
    path.write_text("relay:\n  host: 127.0.0.1\n  port: 6060\n  ping_interval: 12\n  http_enabled: false\n")

    cfg = load_config(path, env={})

    assert cfg.host == "127.0.0.1"
    assert cfg.port == 6060
    assert cfg.ping_interval == 12.0
    assert cfg.http_enabled is False


def test_yaml_top_level_keys_and_unknown_keys(tmp_path):
    path = tmp_path / "relay.yaml"
    path.write_text("port: 7070\nbogus: 1\n")

    cfg = load_config(path, env={})

    assert cfg.port == 7070


def test_environment_wins_over_file(tmp_path):
    path = tmp_path / "relay.yaml"
    path.write_text("port: 7070\nlog_level: INFO\n")

    cfg = load_config(path, env={"PORT": "8080", "RELAY_PING_INTERVAL": "5", "RELAY_LOG_LEVEL": "DEBUG"})

    assert cfg.port == 8080
    assert cfg.ping_interval == 5.0
    assert cfg.log_level == "DEBUG"


def test_missing_or_broken_file_falls_back_to_defaults(tmp_path):
    assert load_config(tmp_path / "absent.yaml", env={}) == RelayConfig()

    broken = tmp_path / "broken.yaml"
    broken.write_text("relay: [unclosed\n")
    assert load_config(broken, env={}) == RelayConfig()


@pytest.mark.parametrize("env", [{"PORT": "not-a-port"}, {"PORT": "70000"}, {"RELAY_PING_INTERVAL": "0"}])
def test_invalid_values_raise(env):
    with pytest.raises(ValueError):
        load_config(env=env)


def test_server_cli_rejects_bad_port():
    from server.cli import app

    result = CliRunner().invoke(app, ["--port", "70000"])

    assert result.exit_code == 2
    assert "Invalid configuration" in result.output


def test_client_cli_rejects_bad_signal_payload():
    from client.relay_cli import app

    result = CliRunner().invoke(app, ["signal", "alice", "bob", "offer", "--payload", "not json"])

    assert result.exit_code == 2
