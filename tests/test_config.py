"""Unit tests for configuration loading."""

import sys
from pathlib import Path

import pytest

# Add packages to path
sys.path.insert(0, str(Path(__file__).parent.parent / "packages"))

from viassh.config import ViaConfig, get_config, validate_config
from viassh.exceptions import ConfigurationError


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Empty viassh environment, run from a directory without a .env file."""
    for name in ("VIASSH_HOSTS", "VIASSH_KEY_FILES", "VIASSH_KEY_PASSPHRASE",
                 "VIASSH_HOST_KEY_POLICY", "VIASSH_KNOWN_HOSTS", "SSH_AUTH_SOCK"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


class TestGetConfig:
    """Tests for get_config."""

    def test_hosts_required(self, clean_env):
        with pytest.raises(ConfigurationError) as exc_info:
            get_config()
        assert exc_info.value.missing_key == "VIASSH_HOSTS"

    def test_hosts_in_order(self, clean_env):
        clean_env.setenv("VIASSH_HOSTS", "alice@bastion:22, bob@internal:2222")
        config = get_config()
        assert config.hosts == ["alice@bastion:22", "bob@internal:2222"]

    def test_defaults(self, clean_env):
        clean_env.setenv("VIASSH_HOSTS", "alice@bastion:22")
        config = get_config()
        assert config.host_key_policy == "known_hosts"
        assert config.known_hosts_file is None
        assert config.key_files == []
        assert config.agent_socket is None
        assert config.logger is None

    def test_optional_settings(self, clean_env, tmp_path):
        clean_env.setenv("VIASSH_HOSTS", "alice@bastion:22")
        clean_env.setenv("SSH_AUTH_SOCK", "/tmp/agent.sock")
        clean_env.setenv("VIASSH_KEY_FILES", f"{tmp_path}/id_a,{tmp_path}/id_b")
        clean_env.setenv("VIASSH_HOST_KEY_POLICY", "warn")
        clean_env.setenv("VIASSH_KNOWN_HOSTS", f"{tmp_path}/known_hosts")

        config = get_config()
        assert config.agent_socket == "/tmp/agent.sock"
        assert config.key_files == [tmp_path / "id_a", tmp_path / "id_b"]
        assert config.host_key_policy == "warn"
        assert config.known_hosts_file == tmp_path / "known_hosts"

    def test_dotenv_file(self, clean_env, tmp_path):
        # Registered with monkeypatch so the value load_dotenv sets is removed afterwards
        clean_env.setenv("VIASSH_HOSTS", "")
        clean_env.delenv("VIASSH_HOSTS")
        (tmp_path / ".env").write_text("VIASSH_HOSTS=carol@jump:22\n")
        config = get_config()
        assert config.hosts == ["carol@jump:22"]

    def test_passphrase_not_in_repr(self, clean_env):
        clean_env.setenv("VIASSH_HOSTS", "alice@bastion:22")
        clean_env.setenv("VIASSH_KEY_PASSPHRASE", "hunter2")
        config = get_config()
        assert config.key_passphrase == "hunter2"
        assert "hunter2" not in repr(config)


class TestValidateConfig:
    """Tests for validate_config."""

    def test_valid(self):
        validate_config(ViaConfig(hosts=["alice@bastion:22"]))

    def test_unknown_policy(self):
        with pytest.raises(ConfigurationError):
            validate_config(ViaConfig(hosts=["alice@bastion:22"], host_key_policy="yolo"))

    def test_missing_key_file(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            validate_config(ViaConfig(hosts=["a@b:22"], key_files=[tmp_path / "missing"]))
        assert exc_info.value.missing_key == "VIASSH_KEY_FILES"

    def test_missing_known_hosts(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            validate_config(ViaConfig(hosts=["a@b:22"], known_hosts_file=tmp_path / "missing"))
        assert exc_info.value.missing_key == "VIASSH_KNOWN_HOSTS"
