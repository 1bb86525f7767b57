from __future__ import annotations

import pytest

from fleetkeeper.providers.openstack.inventory import (
    FINGERPRINT_KEY,
    ServerStatus,
    describe_fault,
    ids_oldest_first,
    image_date_key,
    index_by_name,
    is_occupied,
    is_owned_by,
    looks_like_id,
    public_address,
    public_address_ipv4,
    snapshot_date_key,
    sort_by_name,
)

from .fakes import Resource


def _server(status="ACTIVE", **kwargs):
    return Resource(id="s1", name="node", status=status, **kwargs)


class TestServerStatus:
    @pytest.mark.parametrize(("raw", "expected"), [
        ("ACTIVE", ServerStatus.ACTIVE),
        ("active", ServerStatus.ACTIVE),
        ("SHELVED_OFFLOADED", ServerStatus.SHELVED_OFFLOADED),
        (None, ServerStatus.UNKNOWN),
        ("", ServerStatus.UNKNOWN),
        ("EXPLODED", ServerStatus.UNRECOGNIZED),
    ])
    def test_parse(self, raw, expected):
        assert ServerStatus.parse(raw) is expected


class TestIsOccupied:
    @pytest.mark.parametrize("status", ["UNKNOWN", "MIGRATING", "SHUTOFF", "DELETED"])
    def test_stopped_states(self, status):
        assert not is_occupied(_server(status))

    @pytest.mark.parametrize("status", ["ACTIVE", "BUILD", "ERROR", "PAUSED", "REBOOT", "SOFT_DELETED"])
    def test_in_service_states(self, status):
        assert is_occupied(_server(status))

    def test_unrecognized_status_counts_as_occupied(self):
        assert is_occupied(_server("SOMETHING_NEW"))


class TestOwnership:
    def test_matching_fingerprint(self):
        assert is_owned_by(_server(metadata={FINGERPRINT_KEY: "https://ci/"}), "https://ci/")

    def test_foreign_fingerprint(self):
        assert not is_owned_by(_server(metadata={FINGERPRINT_KEY: "https://other/"}), "https://ci/")

    def test_no_metadata(self):
        assert not is_owned_by(_server(metadata=None), "https://ci/")


class TestLooksLikeId:
    def test_uuid(self):
        assert looks_like_id("0b9a3d3c-5d3f-4a6e-9d9b-1b2c3d4e5f60")

    def test_name(self):
        assert not looks_like_id("ubuntu-22.04")


class TestOrdering:
    def test_sort_by_name_is_case_insensitive(self):
        nets = [Resource(id="2", name="beta"), Resource(id="1", name="Alpha"), Resource(id="3", name="gamma")]
        assert [n.name for n in sort_by_name(nets)] == ["Alpha", "beta", "gamma"]

    def test_index_groups_case_insensitively_in_date_order(self):
        images = [
            Resource(id="c", name="Ubuntu", created_at="2024-03-01", updated_at=None),
            Resource(id="a", name="ubuntu", created_at="2024-01-01", updated_at="2024-02-01"),
            Resource(id="b", name="centos", created_at="2024-01-01", updated_at=None),
        ]

        index = index_by_name(images, image_date_key)

        assert list(index) == ["centos", "Ubuntu"]
        # Missing dates sort first.
        assert [i.id for i in index["Ubuntu"]] == ["c", "a"]

    def test_unnamed_resources_are_indexed_by_id(self):
        snapshots = [Resource(id="only-id", name=None, created_at="2024-01-01")]
        assert list(index_by_name(snapshots, snapshot_date_key)) == ["only-id"]

    def test_ids_oldest_first_is_stable_and_distinct(self):
        a = Resource(id="a", created_at="2024-01-02")
        b = Resource(id="b", created_at="2024-01-01")
        c = Resource(id="c", created_at="2024-01-02")

        assert ids_oldest_first([a, b, c, a], snapshot_date_key) == ["b", "a", "c"]
        assert ids_oldest_first([c, a, b], snapshot_date_key) == ["b", "a", "c"]


class TestAddresses:
    def test_floating_wins(self):
        server = _server(addresses={"net": [
            {"addr": "10.0.0.5", "version": 4, "OS-EXT-IPS:type": "fixed"},
            {"addr": "203.0.113.9", "version": 4, "OS-EXT-IPS:type": "floating"},
        ]})
        assert public_address(server) == "203.0.113.9"

    def test_last_fixed_address_without_floating(self):
        server = _server(addresses={"net": [
            {"addr": "10.0.0.5", "version": 4, "OS-EXT-IPS:type": "fixed"},
            {"addr": "fd00::5", "version": 6, "OS-EXT-IPS:type": "fixed"},
        ]})
        assert public_address(server) == "fd00::5"
        assert public_address_ipv4(server) == "10.0.0.5"

    def test_no_addresses(self):
        assert public_address(_server(addresses={})) is None


class TestDescribeFault:
    def test_no_fault(self):
        assert describe_fault(_server()) == "none"

    def test_fault(self):
        server = _server(fault={"code": 500, "message": "No valid host", "details": "trace"})
        assert describe_fault(server) == "500: No valid host (trace)"
