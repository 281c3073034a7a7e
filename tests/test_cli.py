"""Tests for the Stowage CLI.

The CLI runs against the filesystem backend so state persists between
invocations, as it does for real users.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from stowage.cli import main
from stowage.config import StowageSettings
from stowage.signing import verify_signed_url

SECRET = "cli-test-secret"


@pytest.fixture
def settings(tmp_path: Path) -> StowageSettings:
    """Return filesystem settings rooted in a temp directory."""
    return StowageSettings(
        backend="filesystem",
        filesystem_root=tmp_path / "store",
        signing_secret=SECRET,
        generate_unique_filenames=False,
    )


def _run(
    capsys: pytest.CaptureFixture[str], settings: StowageSettings, *argv: str
) -> tuple[int, Any]:
    code = main(list(argv), settings=settings)
    out = capsys.readouterr().out
    return code, json.loads(out) if out.strip() else None


class TestBucketCommands:
    """mb, buckets, rb."""

    def test_make_and_list(
        self, capsys: pytest.CaptureFixture[str], settings: StowageSettings
    ) -> None:
        code, created = _run(
            capsys, settings, "mb", "docs", "--public", "--allow-type", "text/plain"
        )

        assert code == 0
        assert created["name"] == "docs"
        assert created["public"] is True
        assert created["allowed_mime_types"] == ["text/plain"]

        code, listed = _run(capsys, settings, "buckets")
        assert [b["name"] for b in listed["items"]] == ["docs"]

    def test_duplicate_bucket_exit_code(
        self, capsys: pytest.CaptureFixture[str], settings: StowageSettings
    ) -> None:
        _run(capsys, settings, "mb", "docs")

        code, result = _run(capsys, settings, "mb", "docs")

        assert code == 2
        assert result["error"]["code"] == "CONFLICT"
        assert result["error"]["details"] == {"bucket": "docs"}

    def test_remove_requires_force_when_not_empty(
        self, capsys: pytest.CaptureFixture[str], settings: StowageSettings, tmp_path: Path
    ) -> None:
        source = tmp_path / "a.txt"
        source.write_bytes(b"hello")
        _run(capsys, settings, "mb", "docs")
        _run(capsys, settings, "put", "docs", "a.txt", "--file", str(source))

        code, _ = _run(capsys, settings, "rb", "docs")
        assert code == 2

        code, result = _run(capsys, settings, "rb", "docs", "--force")
        assert code == 0
        assert result == {"deleted": True}


class TestObjectCommands:
    """put, get, ls, info, rm, sign."""

    @pytest.fixture
    def source(
        self, capsys: pytest.CaptureFixture[str], settings: StowageSettings, tmp_path: Path
    ) -> Path:
        path = tmp_path / "report.txt"
        path.write_bytes(b"quarterly numbers")
        _run(capsys, settings, "mb", "docs")
        return path

    def test_put_get_roundtrip(
        self,
        capsys: pytest.CaptureFixture[str],
        settings: StowageSettings,
        source: Path,
        tmp_path: Path,
    ) -> None:
        code, info = _run(
            capsys,
            settings,
            "put",
            "docs",
            "q1/report.txt",
            "--file",
            str(source),
            "--metadata",
            '{"quarter": "Q1"}',
        )
        assert code == 0
        assert info["size"] == 17
        assert info["content_type"] == "text/plain"
        assert info["metadata"]["quarter"] == "Q1"

        out = tmp_path / "downloaded.txt"
        code, summary = _run(capsys, settings, "get", "docs", "q1/report.txt", "--out", str(out))

        assert code == 0
        assert summary["size"] == 17
        assert out.read_bytes() == b"quarterly numbers"

    def test_ls_and_info(
        self, capsys: pytest.CaptureFixture[str], settings: StowageSettings, source: Path
    ) -> None:
        for name in ["a.txt", "b.txt", "sub/c.txt"]:
            _run(capsys, settings, "put", "docs", name, "--file", str(source))

        code, page = _run(capsys, settings, "ls", "docs", "--prefix", "sub/")
        assert code == 0
        assert [f["path"] for f in page["files"]] == ["sub/c.txt"]

        code, info = _run(capsys, settings, "info", "docs", "a.txt")
        assert info["path"] == "a.txt"

    def test_rm_then_info_not_found(
        self, capsys: pytest.CaptureFixture[str], settings: StowageSettings, source: Path
    ) -> None:
        _run(capsys, settings, "put", "docs", "a.txt", "--file", str(source))

        code, result = _run(capsys, settings, "rm", "docs", "a.txt")
        assert (code, result) == (0, {"deleted": True})

        code, result = _run(capsys, settings, "info", "docs", "a.txt")
        assert code == 2
        assert result["error"]["code"] == "NOT_FOUND"

    def test_sign(
        self, capsys: pytest.CaptureFixture[str], settings: StowageSettings, source: Path
    ) -> None:
        _run(capsys, settings, "put", "docs", "a.txt", "--file", str(source))

        code, result = _run(
            capsys, settings, "sign", "docs", "a.txt", "--expires-in", "120", "--action", "delete"
        )

        assert code == 0
        claims = verify_signed_url(result["url"], SECRET)
        assert claims.path == "a.txt"
        assert claims.action.value == "delete"

    def test_bad_metadata_is_internal_error(
        self, capsys: pytest.CaptureFixture[str], settings: StowageSettings, source: Path
    ) -> None:
        code, result = _run(
            capsys, settings, "put", "docs", "a.txt", "--file", str(source), "--metadata", "[]"
        )

        assert code == 1
        assert result["error"]["code"] == "INTERNAL_ERROR"


def test_no_command_prints_help(capsys: pytest.CaptureFixture[str]) -> None:
    assert main([]) == 0
    assert "usage" in capsys.readouterr().out


def test_env_configured_backend(
    capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setenv("STOWAGE_STORAGE_BACKEND", "filesystem")
    monkeypatch.setenv("STOWAGE_FILESYSTEM_ROOT", str(tmp_path / "env-store"))

    assert main(["mb", "from-env"]) == 0
    capsys.readouterr()

    assert (tmp_path / "env-store" / "from-env").is_dir()
