from __future__ import annotations

from pathlib import Path

import pytest

from shardhost.control_plane.provisioning.naming import container_name, sanitize_name, volume_path


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Survival World", "survival-world"),
        ("  Lots   of\tspace ", "-lots-of-space-"),
        ("Steve's Server!!", "steves-server"),
        ("already-clean-42", "already-clean-42"),
        ("Ünïcode Ñame", "ncode-ame"),
        ("", ""),
    ],
)
def test_sanitize_name(raw: str, expected: str) -> None:
    assert sanitize_name(raw) == expected


def test_container_name_is_deterministic() -> None:
    assert container_name("42", "My Cool Server") == "mc-42-my-cool-server"
    assert container_name("42", "My Cool Server") == container_name("42", "My Cool Server")


def test_container_name_differs_per_workload() -> None:
    assert container_name("1", "World") != container_name("2", "World")


def test_volume_path_is_namespaced_by_workload(tmp_path: Path) -> None:
    assert volume_path(tmp_path, "abc") == tmp_path / "abc"
    assert volume_path(str(tmp_path), "abc") == tmp_path / "abc"
