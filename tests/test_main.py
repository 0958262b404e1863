import pytest

from webtail.main import parse
from webtail.sources import Mode


@pytest.fixture(autouse=True)
def no_default_config(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)


def test_no_files_means_stdin():
    cfg, catalog = parse([])
    assert catalog.mode is Mode.STDIN
    assert cfg.port == 8080


def test_files_are_made_absolute(tmp_path):
    (tmp_path / "a.log").write_text("")
    cfg, catalog = parse(["a.log", "--addr", "127.0.0.1:9000"])
    assert catalog.mode is Mode.MULTI
    assert catalog.paths == [str(tmp_path / "a.log")]
    assert (cfg.host, cfg.port) == ("127.0.0.1", 9000)


def test_single_mode(tmp_path):
    _, catalog = parse(["--single", "a.log"])
    assert catalog.mode is Mode.SINGLE
    assert catalog.paths == [str(tmp_path / "a.log")]


@pytest.mark.parametrize("argv", [
    ["--single"],
    ["--single", "a.log", "b.log"],
    ["--addr", "nowhere", "a.log"],
    ["--liveness-timeout", "0"],
    ["--config", "missing.yml"],
])
def test_bad_arguments_exit(argv):
    with pytest.raises(SystemExit) as exc:
        parse(argv)
    assert exc.value.code == 2


def test_cli_overrides_config_file(tmp_path):
    (tmp_path / "settings.yml").write_text("tail:\n  poll_interval: 0.5\nlog:\n  level: warning\n")
    cfg, _ = parse(["--config", "settings.yml", "--poll-interval", "0.2", "--log-file", "logs/w.log"])
    assert cfg.tail.poll_interval == 0.2
    assert cfg.log_level == "WARNING"
    assert cfg.log_file == "logs/w.log"
