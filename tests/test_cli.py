"""Tests for the command line entry point."""

import pytest

from termbridge import __version__
from termbridge.cli import main
from termbridge.config import Config


def test_version(capsys):
    with pytest.raises(SystemExit) as exc:
        main(["--version"])
    assert exc.value.code == 0
    assert __version__ in capsys.readouterr().out


def test_init_writes_config(tmp_path, capsys):
    main(["--config-dir", str(tmp_path), "init", "--port", "9191", "--shell", "/bin/sh"])

    cfg = Config.load(tmp_path)
    assert cfg.server.port == 9191
    assert cfg.server.shell == "/bin/sh"
    assert cfg.client.url == "ws://localhost:9191"
    assert not cfg.tls_enabled
    assert "termbridge server" in capsys.readouterr().out


def test_init_with_tls_and_fingerprint(tmp_path, capsys):
    main(["--config-dir", str(tmp_path), "init", "--tls", "--hostname", "term.local"])
    init_out = capsys.readouterr().out

    cfg = Config.load(tmp_path)
    assert cfg.tls_enabled
    assert cfg.client.url == "wss://term.local:8081"
    assert cfg.client.ca_cert == cfg.server.tls_cert

    main(["--config-dir", str(tmp_path), "show-fingerprint"])
    fp_line = capsys.readouterr().out.splitlines()[1].strip()
    assert fp_line in init_out


def test_show_fingerprint_without_certificate(tmp_path):
    with pytest.raises(SystemExit) as exc:
        main(["--config-dir", str(tmp_path), "show-fingerprint"])
    assert exc.value.code == 1
