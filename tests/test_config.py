"""Tests for command-line settings."""

from pathlib import Path

import pytest

from vboxtop.config import Settings, build_arg_parser


def parse(*argv: str) -> Settings:
    return Settings.from_args(build_arg_parser().parse_args(list(argv)))


def test_defaults(monkeypatch):
    monkeypatch.delenv("VBOXMANAGE", raising=False)
    monkeypatch.delenv("VBOXTOP_LOG", raising=False)

    settings = parse("testvm")

    assert settings == Settings(vm_name="testvm")
    assert settings.poll_interval == 0.0
    assert settings.command_timeout is None
    assert settings.log_file is None
    assert settings.log_level == "WARNING"


def test_environment_defaults(monkeypatch):
    monkeypatch.setenv("VBOXMANAGE", "/usr/lib/virtualbox/VBoxManage")
    monkeypatch.setenv("VBOXTOP_LOG", "debug")

    settings = parse("testvm")

    assert settings.vboxmanage == "/usr/lib/virtualbox/VBoxManage"
    assert settings.log_level == "DEBUG"


def test_all_options():
    settings = parse(
        "testvm",
        "--vboxmanage", "vbm",
        "--cpu", "2",
        "--refresh", "0.5",
        "--poll-interval", "0.1",
        "--timeout", "5",
        "--log-file", "/tmp/vboxtop.log",
        "--log-level", "info",
    )

    assert settings.vboxmanage == "vbm"
    assert settings.cpu == 2
    assert settings.tick_interval == 0.5
    assert settings.poll_interval == 0.1
    assert settings.command_timeout == 5.0
    assert settings.log_file == Path("/tmp/vboxtop.log")
    assert settings.log_level == "INFO"


@pytest.mark.parametrize(
    "argv",
    [
        ["testvm", "--cpu", "-1"],
        ["testvm", "--cpu", "one"],
        ["testvm", "--poll-interval", "-0.5"],
        ["testvm", "--refresh", "0"],
        ["testvm", "--timeout", "abc"],
        [],
    ],
)
def test_invalid_arguments_rejected(argv):
    with pytest.raises(SystemExit):
        build_arg_parser().parse_args(argv)


def test_settings_are_frozen():
    settings = Settings(vm_name="testvm")
    with pytest.raises(AttributeError):
        settings.cpu = 1  # type: ignore[misc]
