"""
Tests for fleet/registry.py and fleet/manifest.py - discovery from disk.

Tests cover:
- Grouping source tree + instance dirs by suffix
- Ordering by numeric index, malformed names ignored
- Validity (source tree and >= 1 instance required)
- Manifest metadata, corrupt manifest fallback
- Full-fleet deletion
"""

import json
from pathlib import Path

import pytest

from fleet.errors import FleetError, InvalidFleetName
from fleet.manifest import (
    BuildState,
    FleetManifest,
    manifest_path,
    read_manifest,
    write_manifest,
)
from fleet.registry import delete_fleet, discover_fleets, find_fleet
from fleet.types import LEGACY_PORTS


# =============================================================================
# DISCOVERY
# =============================================================================

def test_discovery_round_trip(parent_dir: Path, make_fleet_layout):
    make_fleet_layout("a1b2c3d4", 12)

    fleets = discover_fleets(parent_dir)

    assert len(fleets) == 1
    fleet = fleets[0]
    assert fleet.suffix == "a1b2c3d4"
    assert fleet.server_count == 12
    assert fleet.indices == list(range(1, 13))
    assert fleet.build_dirs[9].name == "unrealircd-fleet-a1b2c3d4-10"
    assert fleet.is_valid and fleet.is_complete


def test_malformed_instance_names_are_ignored(parent_dir: Path, make_fleet_layout):
    make_fleet_layout("a1b2c3d4", 2)
    for name in ("unrealircd-fleet-a1b2c3d4-x", "unrealircd-fleet-a1b2c3d4-0", "unrealircd-fleet-a1b2c3d4-02"):
        (parent_dir / name).mkdir()
    (parent_dir / "unrealircd-fleet-a1b2c3d4-3").write_text("a file, not a directory")

    fleet = discover_fleets(parent_dir)[0]
    assert fleet.indices == [1, 2]


def test_fleet_without_source_or_instances_is_invalid(parent_dir: Path, make_fleet_layout):
    make_fleet_layout("nosource", 2, source=False)
    (parent_dir / "unrealircd-fleet-noinst").mkdir()
    make_fleet_layout("good", 2)

    assert [f.suffix for f in discover_fleets(parent_dir)] == ["good"]


def test_multiple_fleets_and_gaps(parent_dir: Path, make_fleet_layout):
    make_fleet_layout("bbbb", 2)
    dirs = make_fleet_layout("aaaa", 3)
    dirs[1].rmdir()

    fleets = discover_fleets(parent_dir)
    assert [f.suffix for f in fleets] == ["aaaa", "bbbb"]
    assert fleets[0].indices == [1, 3]
    assert fleets[0].server_count == 3
    assert not fleets[0].is_complete


def test_missing_parent_dir_yields_nothing(tmp_path: Path):
    assert discover_fleets(tmp_path / "nope") == []


def test_find_fleet(parent_dir: Path, make_fleet_layout):
    make_fleet_layout("a1b2c3d4", 2)
    assert find_fleet(parent_dir, "a1b2c3d4").server_count == 2
    assert find_fleet(parent_dir, "ffffffff") is None
    with pytest.raises(InvalidFleetName):
        find_fleet(parent_dir, "../etc")


# =============================================================================
# MANIFEST
# =============================================================================

def test_manifest_round_trip(tmp_path: Path):
    manifest = FleetManifest(suffix="a1b2c3d4", server_count=3, ports=LEGACY_PORTS, version="6.1.8")
    manifest.mark(1, BuildState.BUILT)
    manifest.edges = [(1, 2)]
    write_manifest(manifest, tmp_path)

    loaded = read_manifest(tmp_path)
    assert loaded.suffix == "a1b2c3d4"
    assert loaded.ports == LEGACY_PORTS
    assert loaded.states == {1: BuildState.BUILT, 2: BuildState.PENDING, 3: BuildState.PENDING}
    assert loaded.edges == [(1, 2)]
    assert loaded.updated_at is not None
    assert all(isinstance(s, BuildState) for s in loaded.states.values())
    assert json.loads(manifest_path(tmp_path).read_text())["servers"][0]["state"] == "built"


def test_manifest_with_unknown_build_state_is_ignored(tmp_path: Path):
    write_manifest(FleetManifest(suffix="a1b2c3d4", server_count=1), tmp_path)
    data = json.loads(manifest_path(tmp_path).read_text())
    data["servers"][0]["state"] = "exploded"
    manifest_path(tmp_path).write_text(json.dumps(data))

    assert read_manifest(tmp_path) is None


def test_manifest_holds_identity_table_without_secrets(tmp_path: Path):
    write_manifest(FleetManifest(suffix="a1b2c3d4", server_count=2), tmp_path)
    data = json.loads(manifest_path(tmp_path).read_text())

    assert [s["network_id"] for s in data["servers"]] == ["001", "002"]
    assert data["servers"][1]["server_port"] == 36901
    assert "password" not in manifest_path(tmp_path).read_text()


def test_discovery_uses_manifest_metadata(parent_dir: Path, make_fleet_layout):
    make_fleet_layout("a1b2c3d4", 2)
    source = parent_dir / "unrealircd-fleet-a1b2c3d4"
    write_manifest(FleetManifest(suffix="a1b2c3d4", server_count=2, ports=LEGACY_PORTS, version="6.1.8"), source)

    fleet = discover_fleets(parent_dir)[0]
    assert fleet.version == "6.1.8"
    assert fleet.ports == LEGACY_PORTS


def test_corrupt_manifest_falls_back_to_scan(parent_dir: Path, make_fleet_layout, caplog):
    make_fleet_layout("a1b2c3d4", 2)
    manifest_path(parent_dir / "unrealircd-fleet-a1b2c3d4").write_text("{ not json")

    fleet = discover_fleets(parent_dir)[0]
    assert fleet.server_count == 2
    assert fleet.version is None
    assert "Ignoring unreadable manifest" in caplog.text


# =============================================================================
# DELETE
# =============================================================================

def test_delete_fleet_removes_everything(parent_dir: Path, make_fleet_layout):
    make_fleet_layout("a1b2c3d4", 3)
    make_fleet_layout("keepme", 2)
    fleet = find_fleet(parent_dir, "a1b2c3d4")

    removed = delete_fleet(fleet)

    assert len(removed) == 4
    assert [f.suffix for f in discover_fleets(parent_dir)] == ["keepme"]
    assert sorted(p.name for p in parent_dir.iterdir()) == [
        "unrealircd-fleet-keepme",
        "unrealircd-fleet-keepme-1",
        "unrealircd-fleet-keepme-2",
    ]


def test_delete_refuses_foreign_source_dir(tmp_path: Path, parent_dir: Path, make_fleet_layout):
    make_fleet_layout("a1b2c3d4", 2)
    fleet = find_fleet(parent_dir, "a1b2c3d4")
    fleet.source_dir = tmp_path

    with pytest.raises(FleetError):
        delete_fleet(fleet)
    assert tmp_path.exists()
