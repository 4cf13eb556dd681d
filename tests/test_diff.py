from mirror_sync.diff import ConflictUnresolved, CopyTo, DeleteAt, diff, diff_event
from mirror_sync.snapshot import FileRecord, Snapshot


def rec(path, mtime, fp):
    return FileRecord(path=path, modified_at=mtime, fingerprint=fp)


def test_addition_copies_to_peer():
    result = diff(Snapshot.of(rec("x.txt", 1, "aa")), Snapshot.empty(), "a", "b")
    assert result.actions == [CopyTo("x.txt", "a", "b")]
    assert result.conflicts == []


def test_identical_records_yield_nothing():
    snap = Snapshot.of(rec("x.txt", 5, "aa"))
    result = diff(snap, Snapshot.of(rec("x.txt", 5, "aa")), "a", "b")
    assert not result


def test_record_equality_ignores_path():
    assert rec("x", 1, "aa") == rec("y", 1, "aa")
    assert rec("x", 1, "aa") != rec("x", 2, "aa")
    assert rec("x", 1, "aa") != rec("x", 1, "bb")


def test_last_writer_wins_both_directions():
    local = Snapshot.of(rec("new.txt", 20, "l"), rec("old.txt", 10, "l"))
    peer = Snapshot.of(rec("new.txt", 10, "p"), rec("old.txt", 20, "p"))
    result = diff(local, peer, "a", "b")
    assert result.actions == [
        CopyTo("new.txt", "a", "b"),
        CopyTo("old.txt", "b", "a"),
    ]


def test_tie_break_is_deterministic_regardless_of_side():
    left = Snapshot.of(rec("f", 10, "one"))
    right = Snapshot.of(rec("f", 20, "two"))
    assert diff(left, right, "a", "b").actions == [CopyTo("f", "b", "a")]
    assert diff(right, left, "b", "a").actions == [CopyTo("f", "b", "a")]


def test_equal_timestamp_different_content_is_a_noop_conflict():
    local = Snapshot.of(rec("f", 10, "one"))
    peer = Snapshot.of(rec("f", 10, "two"))
    result = diff(local, peer, "a", "b")
    assert result.actions == []
    assert result.conflicts == [ConflictUnresolved("f", local["f"], peer["f"])]
    assert result


def test_deletion_when_missing_locally():
    result = diff(Snapshot.empty(), Snapshot.of(rec("gone", 1, "x")), "a", "b")
    assert result.actions == [DeleteAt("gone", "b")]
    assert result.actions[0].target == "b"


def test_first_pass_never_deletes():
    result = diff(Snapshot.empty(), Snapshot.of(rec("only-on-b", 1, "x")), "a", "b", propagate_deletions=False)
    assert not result


def test_action_ordering_additions_modifications_deletions():
    local = Snapshot.of(
        rec("z-new", 1, "n"),
        rec("a-new", 1, "n"),
        rec("m-changed", 9, "new"),
        rec("b-changed", 9, "new"),
    )
    peer = Snapshot.of(
        rec("m-changed", 1, "old"),
        rec("b-changed", 1, "old"),
        rec("y-gone", 1, "g"),
        rec("c-gone", 1, "g"),
    )
    result = diff(local, peer, "a", "b")
    assert result.actions == [
        CopyTo("a-new", "a", "b"),
        CopyTo("z-new", "a", "b"),
        CopyTo("b-changed", "a", "b"),
        CopyTo("m-changed", "a", "b"),
        DeleteAt("c-gone", "b"),
        DeleteAt("y-gone", "b"),
    ]


def test_diff_event_created_and_deleted():
    peer = Snapshot.of(rec("there", 1, "x"))
    assert diff_event("new", rec("new", 1, "n"), peer, "a", "b").actions == [CopyTo("new", "a", "b")]
    assert diff_event("there", None, peer, "a", "b").actions == [DeleteAt("there", "b")]
    assert not diff_event("never-there", None, peer, "a", "b")


def test_diff_event_matches_full_diff_for_modification():
    peer = Snapshot.of(rec("f", 10, "old"))
    local = rec("f", 5, "stale")
    assert diff_event("f", local, peer, "a", "b").actions == [CopyTo("f", "b", "a")]

    tie = diff_event("f", rec("f", 10, "other"), peer, "a", "b")
    assert tie.actions == []
    assert [c.path for c in tie.conflicts] == ["f"]
