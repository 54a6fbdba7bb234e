from __future__ import annotations

import json

import pytest

from tandem.cli import create_parser, main


def _write_suite(tmp_path, body: str):
    path = tmp_path / "smoke_cases.py"
    path.write_text(
        "import asyncio\n"
        "from tandem.testing import Suite\n"
        "SUITE = Suite('smoke')\n" + body,
        encoding="utf-8",
    )
    return path


PASSING = (
    "@SUITE.case()\n"
    "async def sleeps():\n"
    "    await asyncio.sleep(0)\n"
    "@SUITE.case()\n"
    "def adds():\n"
    "    assert 1 + 1 == 2\n"
)


def test_parser_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        create_parser().parse_args([])


def test_config_print_emits_yaml(capsys, tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    (tmp_path / "tandem.yaml").write_text("runtime:\n  worker_threads: 3\n", encoding="utf-8")
    with pytest.raises(SystemExit) as info:
        main(["config", "print"])
    assert info.value.code == 0
    out = capsys.readouterr().out
    assert "runtime:" in out
    assert "worker_threads: 3" in out


def test_config_print_json(capsys, tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    with pytest.raises(SystemExit) as info:
        main(["config", "print", "--json"])
    assert info.value.code == 0
    data = json.loads(capsys.readouterr().out)
    assert data["runtime"]["executor"] == "thread_pool"


def test_test_command_lists_cases(capsys, tmp_path) -> None:
    path = _write_suite(tmp_path, PASSING)
    with pytest.raises(SystemExit) as info:
        main(["test", str(path), "--list"])
    assert info.value.code == 0
    out = capsys.readouterr().out
    assert "sleeps: async" in out
    assert "adds: sync" in out


def test_test_command_runs_the_suite(capsys, tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    path = _write_suite(tmp_path, PASSING)
    with pytest.raises(SystemExit) as info:
        main(["test", str(path), "--workers", "2"])
    assert info.value.code == 0
    assert "2 passed; 0 failed" in capsys.readouterr().out


def test_test_command_reports_failures(capsys, tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    path = _write_suite(tmp_path, "@SUITE.case()\ndef broken():\n    raise ValueError('bad')\n")
    with pytest.raises(SystemExit) as info:
        main(["test", str(path)])
    assert info.value.code == 1
    assert "ValueError: bad" in capsys.readouterr().out


def test_unknown_suite_is_a_usage_error(capsys, tmp_path) -> None:
    with pytest.raises(SystemExit) as info:
        main(["test", str(tmp_path / "missing.py")])
    assert info.value.code == 2
    assert "Suite file not found" in capsys.readouterr().out
