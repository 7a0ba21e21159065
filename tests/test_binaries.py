from __future__ import annotations

from pathlib import Path

from shellhook.binaries import DEFAULT_SEARCH_DIRS, BinaryResolver


def test_first_existing_directory_wins() -> None:
    present = {"/system/bin/sh", "/system/xbin/sh"}
    resolver = BinaryResolver(exists=lambda path: path in present)

    assert resolver.resolve("sh") == "/system/bin/sh"


def test_later_directory_used_when_earlier_missing() -> None:
    resolver = BinaryResolver(exists=lambda path: path == "/system/xbin/su")

    assert resolver.resolve("su") == "/system/xbin/su"


def test_falls_back_to_bare_name() -> None:
    resolver = BinaryResolver(exists=lambda path: False)

    assert resolver.resolve("su") == "su"


def test_real_filesystem_lookup(tmp_path: Path) -> None:
    first = tmp_path / "first"
    second = tmp_path / "second"
    first.mkdir()
    second.mkdir()
    (second / "sh").write_text("#!/bin/sh\n", encoding="utf-8")
    resolver = BinaryResolver(search_dirs=(str(first), str(second)))

    assert resolver.resolve("sh") == str(second / "sh")
    assert resolver.resolve("su") == "su"


def test_default_search_dirs_order() -> None:
    assert DEFAULT_SEARCH_DIRS == ("/system/bin", "/system/xbin")
