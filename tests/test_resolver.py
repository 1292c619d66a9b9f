"""
Tests for duplicate resolution: keeper choice, mirrored destinations and
the ledger bookkeeping of every relocation.
"""
import hashlib
from pathlib import Path

import pytest

from hashledger.config import OrderRule, PreserveRule, ResolverConfig
from hashledger.filters import FilterError, compile_filters
from hashledger.models import GroupMember
from hashledger.resolver import (
    DuplicateResolver,
    RelocationError,
    free_destination,
    mirror_destination,
    select_keeper,
)


def sha256_of(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest().upper()


def record(ledger, path: Path, processed_at: int) -> None:
    content = path.read_bytes()
    ledger.log_file_hash(sha256_of(content), "SHA256", path, len(content), processed_at)


def actionable_groups(ledger):
    return ledger.get_file_hashes(-1, compile_filters(["FileCount > 1"], "group"))


@pytest.fixture
def destination(tmp_path) -> Path:
    return tmp_path / "dest"


def resolver_for(ledger, destination, **overrides) -> DuplicateResolver:
    cfg = ResolverConfig(destination=str(destination), **overrides)
    return DuplicateResolver(ledger, cfg, quiet=True)


class TestMirrorDestination:
    def test_windows_drive_becomes_volume_folder(self):
        target = mirror_destination("C:\\data\\docs\\a.txt", Path("/dest"))
        assert target == Path("/dest/C_/data/docs/a.txt")

    def test_unc_share_becomes_volume_folder(self):
        target = mirror_destination("\\\\srv\\share\\x\\y.txt", Path("/dest"))
        assert target == Path("/dest/srv_share/x/y.txt")

    def test_posix_path_mirrors_below_root(self):
        assert mirror_destination("/home/u/a.txt", Path("/dest")) == Path("/dest/home/u/a.txt")

    @pytest.mark.parametrize("source", ["relative/a.txt", "C:data\\a.txt", "/a/../b.txt", "/"])
    def test_unsafe_sources_are_rejected(self, source):
        with pytest.raises(ValueError):
            mirror_destination(source, Path("/dest"))


class TestFreeDestination:
    def test_unused_path_is_returned_as_is(self, tmp_path):
        assert free_destination(tmp_path / "a.txt") == tmp_path / "a.txt"

    def test_existing_names_get_numeric_suffix(self, tmp_path):
        (tmp_path / "a.txt").write_text("x")
        (tmp_path / "a_1.txt").write_text("x")
        assert free_destination(tmp_path / "a.txt") == tmp_path / "a_2.txt"


class TestSelectKeeper:
    members = [
        GroupMember(1, "/data/b/report.txt", 10, 300),
        GroupMember(2, "/data/archive/r.txt", 10, 100),
        GroupMember(3, "/d/a_long_report_name.txt", 10, 200),
    ]

    @pytest.mark.parametrize(
        "rule, expected",
        [
            (PreserveRule.EARLIEST_PROCESSED, 2),
            (PreserveRule.LONGEST_PATH, 3),
            (PreserveRule.SHORTEST_PATH, 1),
            (PreserveRule.LONGEST_NAME, 3),
        ],
    )
    def test_rules(self, rule, expected):
        assert select_keeper(self.members, rule).file_hash_id == expected

    def test_rule_names_are_accepted(self):
        assert select_keeper(self.members, "ShortestPath").file_hash_id == 1

    def test_ties_go_to_first_member(self):
        tied = [GroupMember(1, "/x/aa.txt", 1, 5), GroupMember(2, "/y/bb.txt", 1, 5)]
        for rule in PreserveRule:
            assert select_keeper(tied, rule).file_hash_id == 1

    def test_windows_names(self):
        members = [GroupMember(1, "C:\\a\\long_name.txt", 1, 1), GroupMember(2, "C:\\much\\longer\\path\\n.txt", 1, 1)]
        assert select_keeper(members, PreserveRule.LONGEST_NAME).file_hash_id == 1
        assert select_keeper(members, PreserveRule.LONGEST_PATH).file_hash_id == 2

    def test_empty_group(self):
        with pytest.raises(ValueError):
            select_keeper([], PreserveRule.LONGEST_PATH)


class TestConstruction:
    def test_destination_required(self, ledger):
        with pytest.raises(ValueError):
            DuplicateResolver(ledger, ResolverConfig(), quiet=True)

    def test_relative_destination_rejected(self, ledger):
        with pytest.raises(ValueError):
            DuplicateResolver(ledger, ResolverConfig(destination="dest"), quiet=True)

    def test_bad_filters_rejected_before_io(self, ledger, destination):
        with pytest.raises(FilterError):
            resolver_for(ledger, destination, row_filters=["FilePath = 'a' OR 1=1"])
        with pytest.raises(FilterError):
            resolver_for(ledger, destination, group_filters=["Owner = 'x'"])
        assert not destination.exists()


class TestResolve:
    def test_longest_path_keeps_deepest_copy(self, ledger, make_file, destination):
        short = make_file("a/x.txt")
        deep = make_file("keep/nested/deeper/x.txt")
        record(ledger, short, 1)
        record(ledger, deep, 2)

        stats = resolver_for(ledger, destination, preserve_by=PreserveRule.LONGEST_PATH).run()

        assert stats.groups_seen == 1
        assert stats.groups_modified == 1
        assert stats.files_relocated == 1
        assert stats.bytes_relocated == len(b"duplicate content")
        assert deep.exists()
        assert not short.exists()
        moved_to = mirror_destination(str(short), destination)
        assert moved_to.read_bytes() == b"duplicate content"

        records = ledger.get_moved_files(short)
        assert [r.destination_path for r in records] == [str(moved_to)]
        assert records[0].hash == sha256_of(b"duplicate content")
        assert actionable_groups(ledger) == []

    def test_second_run_is_noop(self, ledger, make_file, destination):
        for i, name in enumerate(["a/x.txt", "b/x.txt", "c/x.txt"]):
            record(ledger, make_file(name), i)

        first = resolver_for(ledger, destination).run()
        assert first.files_relocated == 2
        second = resolver_for(ledger, destination).run()
        assert second.groups_seen == 0
        assert second.files_relocated == 0
        assert len(ledger.get_moved_files()) == 2

    def test_earliest_processed_is_kept_by_default(self, ledger, make_file, destination):
        late = make_file("a/x.txt")
        early = make_file("b/x.txt")
        record(ledger, late, 50)
        record(ledger, early, 10)

        resolver_for(ledger, destination).run()
        assert early.exists()
        assert not late.exists()

    def test_copy_mode_leaves_source_in_place(self, ledger, make_file, destination):
        keep = make_file("a/x.txt")
        dup = make_file("b/x.txt")
        record(ledger, keep, 1)
        record(ledger, dup, 2)

        stats = resolver_for(ledger, destination, copy_files=True).run()

        assert stats.files_relocated == 1
        assert dup.exists()
        assert mirror_destination(str(dup), destination).exists()
        assert stats.groups[0]["outcomes"][0].status == "copied"
        assert not ledger.file_exists_in_database(dup)

    def test_missing_member_is_skipped(self, ledger, make_file, destination):
        gone = make_file("a/x.txt")
        keep = make_file("b/x.txt")
        dup = make_file("c/x.txt")
        record(ledger, gone, 1)
        record(ledger, keep, 2)
        record(ledger, dup, 3)
        gone.unlink()

        stats = resolver_for(ledger, destination).run()

        # The keeper is chosen among files still on disk.
        assert keep.exists()
        assert not dup.exists()
        assert stats.files_missing == 1
        assert stats.files_relocated == 1
        assert ledger.get_moved_files(gone) == []
        assert ledger.file_exists_in_database(gone)

    def test_destination_collision_gets_suffix(self, ledger, make_file, destination):
        keep = make_file("a/x.txt")
        dup = make_file("b/x.txt")
        record(ledger, keep, 1)
        record(ledger, dup, 2)
        occupied = mirror_destination(str(dup), destination)
        occupied.parent.mkdir(parents=True)
        occupied.write_bytes(b"someone else")

        resolver_for(ledger, destination).run()

        assert occupied.read_bytes() == b"someone else"
        suffixed = occupied.with_name("x_1.txt")
        assert suffixed.read_bytes() == b"duplicate content"
        assert ledger.get_moved_files(dup)[0].destination_path == str(suffixed)

    def test_max_files_budget(self, ledger, make_file, destination):
        for group in range(3):
            content = f"group {group}".encode()
            record(ledger, make_file(f"g{group}/a.txt", content), 1)
            record(ledger, make_file(f"g{group}/b.txt", content), 2)

        stats = resolver_for(ledger, destination, max_files=2).run()

        assert stats.files_relocated == 2
        assert stats.budget_exhausted
        assert len(ledger.get_moved_files()) == 2
        assert len(actionable_groups(ledger)) == 1

    def test_zero_budget_touches_nothing(self, ledger, make_file, destination):
        record(ledger, make_file("a/x.txt"), 1)
        record(ledger, make_file("b/x.txt"), 2)

        stats = resolver_for(ledger, destination, max_files=0).run()
        assert stats.files_relocated == 0
        assert stats.budget_exhausted
        assert ledger.get_moved_files() == []

    def test_dry_run_plans_without_side_effects(self, ledger, make_file, destination):
        keep = make_file("a/x.txt")
        dup = make_file("b/x.txt")
        record(ledger, keep, 1)
        record(ledger, dup, 2)

        stats = resolver_for(ledger, destination, dry_run=True).run()

        assert stats.files_relocated == 1
        outcome = stats.groups[0]["outcomes"][0]
        assert outcome.status == "planned"
        assert outcome.destination == str(mirror_destination(str(dup), destination))
        assert dup.exists()
        assert not destination.exists()
        assert ledger.get_moved_files() == []
        assert len(actionable_groups(ledger)) == 1

    def test_row_filter_limits_members(self, ledger, make_file, destination, tmp_path):
        for name in ["inbox/a.txt", "inbox/b.txt"]:
            record(ledger, make_file(name, b"inbox copy"), 1)
        for name in ["other/a.txt", "other/b.txt"]:
            record(ledger, make_file(name, b"other copy"), 1)
        inbox = (tmp_path / "files" / "inbox").resolve()

        stats = resolver_for(ledger, destination, row_filters=[f"FilePath LIKE '{inbox}/%'"]).run()

        assert stats.groups_seen == 1
        assert stats.groups[0]["hash"] == sha256_of(b"inbox copy")
        assert len(actionable_groups(ledger)) == 1

    def test_group_filter(self, ledger, make_file, destination):
        for name in ["s/a.txt", "s/b.txt"]:
            record(ledger, make_file(name, b"tiny"), 1)
        for name in ["l/a.txt", "l/b.txt"]:
            record(ledger, make_file(name, b"considerably larger content"), 1)

        stats = resolver_for(ledger, destination, group_filters=["MaxFileSize > 10"]).run()

        assert stats.groups_seen == 1
        assert stats.groups[0]["hash"] == sha256_of(b"considerably larger content")

    def test_algorithm_selects_groups(self, ledger, make_file, destination):
        a = make_file("a/x.txt")
        b = make_file("b/x.txt")
        ledger.log_file_hash("FEED", "MD5", a, 1, 1)
        ledger.log_file_hash("FEED", "MD5", b, 1, 2)

        assert resolver_for(ledger, destination).run().groups_seen == 0
        assert resolver_for(ledger, destination, algorithm="md5").run().files_relocated == 1

    def test_descending_order(self, ledger, make_file, destination):
        for name in ["a/1.txt", "a/2.txt"]:
            record(ledger, make_file(name, b"first"), 10)
        for name in ["b/1.txt", "b/2.txt"]:
            record(ledger, make_file(name, b"second"), 20)

        stats = resolver_for(
            ledger, destination, order_by=OrderRule.EARLIEST_PROCESSED, descending=True, dry_run=True
        ).run()
        assert [g["hash"] for g in stats.groups] == [sha256_of(b"second"), sha256_of(b"first")]

    def test_file_paths_order_uses_sorted_members(self, ledger, make_file, destination):
        # Recorded out of path order: c/ before a/.
        record(ledger, make_file("c/1.txt", b"mixed"), 1)
        record(ledger, make_file("a/2.txt", b"mixed"), 2)
        record(ledger, make_file("b/1.txt", b"plain"), 3)
        record(ledger, make_file("b/2.txt", b"plain"), 4)

        groups = resolver_for(ledger, destination, order_by=OrderRule.FILE_PATHS).candidate_groups()

        assert [g["Hash"] for g in groups] == [sha256_of(b"mixed"), sha256_of(b"plain")]
        assert groups[0]["FilePaths"].split("\n")[0].endswith("a/2.txt")


class TestRelocationFailures:
    @pytest.fixture
    def failing_move(self, monkeypatch):
        def _fail(src, dst):
            raise OSError("device not ready")

        monkeypatch.setattr("hashledger.resolver.shutil.move", _fail)

    def _two_groups(self, ledger, make_file):
        for group in range(2):
            content = f"group {group}".encode()
            record(ledger, make_file(f"g{group}/a.txt", content), 1)
            record(ledger, make_file(f"g{group}/b.txt", content), 2)

    def test_continue_mode_records_failures(self, ledger, make_file, destination, failing_move):
        self._two_groups(ledger, make_file)

        stats = resolver_for(ledger, destination).run()

        assert stats.files_failed == 2
        assert stats.files_relocated == 0
        assert len(stats.errors) == 2
        moved = ledger.get_moved_files()
        assert len(moved) == 2
        assert all(r.failed for r in moved)

    def test_halt_mode_stops_at_first_failure(self, ledger, make_file, destination, failing_move):
        self._two_groups(ledger, make_file)

        with pytest.raises(RelocationError) as info:
            resolver_for(ledger, destination, halt_on_error=True).run()

        assert info.value.source.endswith("b.txt")
        moved = ledger.get_moved_files()
        assert len(moved) == 1
        assert moved[0].failed
        assert len(actionable_groups(ledger)) == 1

    def test_failed_sources_are_not_retried_without_reprocess(self, ledger, make_file, destination, failing_move):
        self._two_groups(ledger, make_file)
        resolver_for(ledger, destination).run()

        assert resolver_for(ledger, destination).run().groups_seen == 0


class TestReprocess:
    def test_reprocess_includes_moved_paths(self, ledger, make_file, destination):
        keep = make_file("a/x.txt")
        dup = make_file("b/x.txt")
        record(ledger, keep, 1)
        record(ledger, dup, 2)
        resolver_for(ledger, destination).run()

        # The duplicate reappears at its old location and is scanned again.
        make_file("b/x.txt")
        record(ledger, dup, 3)
        assert resolver_for(ledger, destination).run().groups_seen == 0

        stats = resolver_for(ledger, destination, reprocess=True).run()

        assert stats.files_relocated == 1
        assert keep.exists()
        assert not dup.exists()
        first_target = mirror_destination(str(dup), destination)
        assert first_target.exists()
        assert first_target.with_name("x_1.txt").exists()
        assert len(ledger.get_moved_files(dup)) == 2
