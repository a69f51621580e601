"""Tests for configuration loading."""

import pytest

from macs.utils.config import MACSConfig


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    for name in (
        "MACS_HANDLER_TIMEOUT", "MACS_BROADCAST_TO_SENDER", "MACS_ARBITRATOR",
        "MACS_NEGOTIATION_THRESHOLD", "MACS_DEFAULT_CONFIDENCE",
        "MACS_PROMPT_MAX_TOKENS", "MACS_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


class TestMACSConfig:
    def test_defaults(self) -> None:
        config = MACSConfig.load()
        assert config.bus.handler_timeout == 30.0
        assert config.bus.deliver_broadcast_to_sender is True
        assert config.negotiation.arbitrator == "JUPITER"
        assert config.negotiation.trigger_threshold == 0.65
        assert config.blackboard.prompt_max_tokens == 2000
        assert config.logging.level == "INFO"

    def test_yaml(self, tmp_path) -> None:
        path = tmp_path / "custom.yaml"
        path.write_text(
            "bus:\n  handler_timeout: 5\n"
            "negotiation:\n  arbitrator: SUN\n"
            "blackboard:\n  prompt_max_tokens: 500\n  high_threshold: 0.9\n",
            encoding="utf-8",
        )
        config = MACSConfig.load(path)
        assert config.bus.handler_timeout == 5.0
        assert config.negotiation.arbitrator == "SUN"
        assert config.blackboard.prompt_max_tokens == 500
        assert config.blackboard.high_threshold == 0.9
        assert config.blackboard.medium_threshold == 0.5

    def test_default_file_in_cwd(self, tmp_path) -> None:
        (tmp_path / "macs.yaml").write_text("logging:\n  level: DEBUG\n", encoding="utf-8")
        assert MACSConfig.load().logging.level == "DEBUG"

    def test_empty_yaml(self, tmp_path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert MACSConfig.load(path).bus.handler_timeout == 30.0

    def test_env_overrides_yaml(self, tmp_path, monkeypatch) -> None:
        path = tmp_path / "custom.yaml"
        path.write_text("negotiation:\n  arbitrator: SUN\n", encoding="utf-8")
        monkeypatch.setenv("MACS_ARBITRATOR", "EARTH")
        monkeypatch.setenv("MACS_HANDLER_TIMEOUT", "2.5")
        monkeypatch.setenv("MACS_BROADCAST_TO_SENDER", "no")
        monkeypatch.setenv("MACS_NEGOTIATION_THRESHOLD", "0.5")
        monkeypatch.setenv("MACS_DEFAULT_CONFIDENCE", "0.6")
        monkeypatch.setenv("MACS_PROMPT_MAX_TOKENS", "128")

        config = MACSConfig.load(path)

        assert config.negotiation.arbitrator == "EARTH"
        assert config.bus.handler_timeout == 2.5
        assert config.bus.deliver_broadcast_to_sender is False
        assert config.negotiation.trigger_threshold == 0.5
        assert config.blackboard.default_confidence == 0.6
        assert config.blackboard.prompt_max_tokens == 128

    def test_bad_boolean(self, monkeypatch) -> None:
        monkeypatch.setenv("MACS_BROADCAST_TO_SENDER", "maybe")
        with pytest.raises(ValueError, match="MACS_BROADCAST_TO_SENDER"):
            MACSConfig.load()

    def test_yaml_boolean_values(self, tmp_path) -> None:
        path = tmp_path / "custom.yaml"
        path.write_text("bus:\n  deliver_broadcast_to_sender: false\n", encoding="utf-8")
        assert MACSConfig.load(path).bus.deliver_broadcast_to_sender is False

    def test_yaml_quoted_boolean(self, tmp_path) -> None:
        path = tmp_path / "custom.yaml"
        path.write_text('bus:\n  deliver_broadcast_to_sender: "false"\n', encoding="utf-8")
        assert MACSConfig.load(path).bus.deliver_broadcast_to_sender is False

    def test_yaml_bad_boolean(self, tmp_path) -> None:
        path = tmp_path / "custom.yaml"
        path.write_text('bus:\n  deliver_broadcast_to_sender: "sometimes"\n', encoding="utf-8")
        with pytest.raises(ValueError, match="deliver_broadcast_to_sender"):
            MACSConfig.load(path)
