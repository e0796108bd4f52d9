from __future__ import annotations

import logging
from dataclasses import dataclass

import live_transcriber.main as cli
from live_transcriber.config.settings import AppSettings, load_settings, save_settings


@dataclass
class FakeSupervisor:
    settings: AppSettings
    stop_signal: object
    last_settings = None

    async def run(self) -> int:
        FakeSupervisor.last_settings = self.settings
        return 0


def test_version_prints_package_version(capsys):
    assert cli.main(["--version"]) == 0
    assert capsys.readouterr().out.strip() == "0.1.0"


def test_run_applies_command_line_overrides(monkeypatch, tmp_path):
    monkeypatch.setattr(cli, "TranscriberSupervisor", FakeSupervisor)

    code = cli.main(
        [
            "--config",
            str(tmp_path / "settings.json"),
            "run",
            "--device",
            "USB Mic",
            "--language",
            "ko",
            "--debounce",
            "0.5",
        ]
    )
    assert code == 0
    settings = FakeSupervisor.last_settings
    assert settings.audio.input_device == "USB Mic"
    assert settings.transcription.language == "ko"
    assert settings.output.debounce_s == 0.5
    assert settings.transcription.model == "gpt-4o-transcribe"


def test_no_command_runs_transcription(monkeypatch, tmp_path):
    monkeypatch.setattr(cli, "TranscriberSupervisor", FakeSupervisor)
    FakeSupervisor.last_settings = None

    assert cli.main(["--config", str(tmp_path / "settings.json")]) == 0
    assert FakeSupervisor.last_settings == AppSettings()


def test_run_uses_settings_file(monkeypatch, tmp_path):
    monkeypatch.setattr(cli, "TranscriberSupervisor", FakeSupervisor)
    path = tmp_path / "settings.json"
    stored = AppSettings()
    stored.transcription.model = "gpt-4o-mini-transcribe"
    save_settings(path, stored)

    assert cli.main(["--config", str(path), "run"]) == 0
    assert FakeSupervisor.last_settings.transcription.model == "gpt-4o-mini-transcribe"


def test_invalid_override_is_rejected(monkeypatch, tmp_path, capsys):
    monkeypatch.setattr(cli, "TranscriberSupervisor", FakeSupervisor)

    code = cli.main(["--config", str(tmp_path / "settings.json"), "run", "--debounce", "0"])
    assert code == 2
    assert "invalid settings" in capsys.readouterr().out


def test_invalid_settings_file_is_rejected(monkeypatch, tmp_path, capsys):
    monkeypatch.setattr(cli, "TranscriberSupervisor", FakeSupervisor)
    path = tmp_path / "settings.json"
    path.write_text("{broken", encoding="utf-8")

    assert cli.main(["--config", str(path), "run"]) == 2
    assert "invalid settings" in capsys.readouterr().out


def test_init_config_writes_defaults_once(tmp_path, capsys):
    path = tmp_path / "nested" / "settings.json"

    assert cli.main(["--config", str(path), "init-config"]) == 0
    assert load_settings(path) == AppSettings()

    assert cli.main(["--config", str(path), "init-config"]) == 2
    assert "already exists" in capsys.readouterr().out
    assert cli.main(["--config", str(path), "init-config", "--force"]) == 0


def test_unknown_log_level_is_rejected(tmp_path, capsys):
    assert cli.main(["--config", str(tmp_path / "settings.json"), "--log-level", "LOUD", "run"]) == 2
    assert "unknown log level" in capsys.readouterr().out


def test_log_file_receives_records(tmp_path):
    log_file = tmp_path / "logs" / "live-transcriber.log"
    cli.configure_logging("INFO", log_file)
    try:
        logging.getLogger("live_transcriber.test").info("hello log file")
        for handler in logging.getLogger().handlers:
            handler.flush()
        assert "hello log file" in log_file.read_text(encoding="utf-8")
    finally:
        for handler in list(logging.getLogger().handlers):
            handler.close()
            logging.getLogger().removeHandler(handler)
