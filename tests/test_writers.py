import ipaddress
import os

import pytest

from conftest import read_range_store, read_string_db
from dnsdb.errors import DestinationOpenFailed, PublishFailed
from dnsdb.writers import PAGE_SIZE, RangeArtifactWriter, RangeStore, StringArtifactWriter


class TestStringArtifactWriter:
    def test_keys_and_default_value(self, tmp_path):
        dest = tmp_path / "domains.cdb"
        count = StringArtifactWriter(str(dest)).write_all([(b"example.com", b"block"), (b"evil.test", b"block")])

        assert count == 2
        reader = read_string_db(dest)
        assert set(reader.keys()) == {b"example.com", b"evil.test"}
        assert reader.get(b"example.com") == b"block"
        assert not os.path.exists(str(dest) + ".tmp")

    def test_empty_value_key_is_present(self, tmp_path):
        dest = tmp_path / "domains.cdb"
        StringArtifactWriter(str(dest)).write_all([(b"example.com", b"")])
        reader = read_string_db(dest)
        assert b"example.com" in reader
        assert reader.get(b"example.com") == b""

    def test_stale_temp_is_truncated(self, tmp_path):
        dest = tmp_path / "domains.cdb"
        (tmp_path / "domains.cdb.tmp").write_bytes(b"garbage" * 1000)
        StringArtifactWriter(str(dest)).write_all([(b"a.test", b"")])
        assert set(read_string_db(dest).keys()) == {b"a.test"}

    def test_failure_keeps_previous_artifact(self, tmp_path):
        dest = tmp_path / "domains.cdb"
        StringArtifactWriter(str(dest)).write_all([(b"old.test", b"")])
        before = dest.read_bytes()

        def failing_items():
            yield b"new.test", b""
            raise RuntimeError("source went away")

        with pytest.raises(RuntimeError):
            StringArtifactWriter(str(dest)).write_all(failing_items())
        assert dest.read_bytes() == before

    def test_unwritable_destination(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_bytes(b"")
        with pytest.raises(DestinationOpenFailed):
            StringArtifactWriter(str(blocker / "domains.cdb")).begin()

    def test_publish_failure(self, tmp_path):
        dest = tmp_path / "taken"
        dest.mkdir()
        (dest / "child").write_bytes(b"")
        with pytest.raises(PublishFailed):
            StringArtifactWriter(str(dest)).write_all([(b"a.test", b"")])

    def test_creates_parent_directories(self, tmp_path):
        dest = tmp_path / "nested" / "dir" / "domains.cdb"
        StringArtifactWriter(str(dest)).write_all([(b"a.test", b"")])
        assert dest.exists()


def packed(address: str) -> bytes:
    return ipaddress.ip_address(address).packed


class TestRangeArtifactWriter:
    def test_entries_are_upper_to_lower(self, tmp_path):
        dest = tmp_path / "ips.mdb"
        entries = [
            (packed("10.0.0.1"), packed("10.0.0.1")),
            (packed("192.168.0.255"), packed("192.168.0.0")),
        ]
        assert RangeArtifactWriter(str(dest)).write_all(entries) == 2
        assert read_range_store(dest) == dict(entries)
        assert not os.path.exists(str(dest) + ".tmp")
        assert not os.path.exists(str(dest) + ".tmp-lock")

    def test_rebuild_drops_previous_entries(self, tmp_path):
        dest = tmp_path / "ips.mdb"
        RangeArtifactWriter(str(dest)).write_all([(packed("10.0.0.1"), packed("10.0.0.1"))])
        RangeArtifactWriter(str(dest)).write_all([(packed("10.0.0.2"), packed("10.0.0.2"))])
        assert read_range_store(dest) == {packed("10.0.0.2"): packed("10.0.0.2")}

    def test_failure_keeps_previous_artifact(self, tmp_path):
        dest = tmp_path / "ips.mdb"
        RangeArtifactWriter(str(dest)).write_all([(packed("10.0.0.1"), packed("10.0.0.1"))])
        before = dest.read_bytes()

        def failing_items():
            yield packed("10.0.0.2"), packed("10.0.0.2")
            raise RuntimeError("source went away")

        with pytest.raises(RuntimeError):
            RangeArtifactWriter(str(dest)).write_all(failing_items())
        assert dest.read_bytes() == before
        assert read_range_store(dest) == {packed("10.0.0.1"): packed("10.0.0.1")}

    def test_leftover_temp_store_is_emptied(self, tmp_path):
        dest = tmp_path / "ips.mdb"
        stale = RangeArtifactWriter(str(tmp_path / "ips.mdb.tmp"))
        stale.write_all([(packed("10.9.9.9"), packed("10.9.9.9"))])

        RangeArtifactWriter(str(dest)).write_all([(packed("10.0.0.1"), packed("10.0.0.1"))])
        assert read_range_store(dest) == {packed("10.0.0.1"): packed("10.0.0.1")}

    def test_empty_list_creates_empty_table(self, tmp_path):
        dest = tmp_path / "ips.mdb"
        RangeArtifactWriter(str(dest)).write_all([])
        assert read_range_store(dest) == {}

    def test_map_full_grows_and_retries(self, tmp_path):
        dest = tmp_path / "ips.mdb"
        entries = [(ipaddress.IPv4Address(0x0A000000 + i).packed,) * 2 for i in range(20000)]
        writer = RangeArtifactWriter(str(dest), map_size=32 * PAGE_SIZE)
        assert writer.write_all(entries) == 20000
        stored = read_range_store(dest)
        assert len(stored) == 20000
        assert stored[packed("10.0.0.5")] == packed("10.0.0.5")


class TestRangeStore:
    def test_grow_is_page_aligned(self, tmp_path):
        store = RangeStore(str(tmp_path / "store.mdb"), map_size=10 * PAGE_SIZE)
        try:
            assert store.grow() == 15 * PAGE_SIZE
            assert store.map_size == 15 * PAGE_SIZE
            assert store.grow() % PAGE_SIZE == 0
        finally:
            store.close()

    def test_open_failure(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_bytes(b"")
        with pytest.raises(DestinationOpenFailed):
            RangeStore(str(blocker / "store.mdb"))
