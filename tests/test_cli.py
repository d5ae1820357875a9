"""
Tests for the command-line interface.
"""

import pytest

from mailrelay.cli import main, parse_args


def test_serve_arguments():
    args = parse_args(["serve", "--host", "127.0.0.1", "--port", "5000", "--debug"])

    assert args.command == "serve"
    assert args.host == "127.0.0.1"
    assert args.port == 5000
    assert args.debug is True


def test_command_is_required():
    with pytest.raises(SystemExit):
        parse_args([])


def test_generate_key(capsys):
    assert main(["generate-key"]) == 0

    key = capsys.readouterr().out.strip()
    assert len(key) == 64
    int(key, 16)


def test_generate_key_custom_length(capsys):
    assert main(["generate-key", "--bytes", "24"]) == 0

    assert len(capsys.readouterr().out.strip()) == 48


def test_generate_key_too_short(capsys):
    assert main(["generate-key", "--bytes", "8"]) == 2
    assert "16 bytes" in capsys.readouterr().err


def test_missing_config_file(tmp_path, capsys):
    assert main(["check", "--config", str(tmp_path / "absent.toml")]) == 1
    assert "not found" in capsys.readouterr().err
