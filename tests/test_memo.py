from __future__ import annotations

import threading

from execguard.approvals.memo import ApprovedCommandMemo


def test_memo_starts_empty() -> None:
    memo = ApprovedCommandMemo()

    assert len(memo) == 0
    assert memo.is_approved(["ls"]) is False


def test_memo_compares_full_argument_vector() -> None:
    memo = ApprovedCommandMemo()
    memo.record_approved(["npm", "test"])

    assert memo.is_approved(("npm", "test")) is True
    assert memo.is_approved(["npm", "test", "--watch"]) is False
    assert memo.is_approved(["npm"]) is False
    assert memo.is_approved(("npm test",)) is False


def test_recording_twice_keeps_one_entry() -> None:
    memo = ApprovedCommandMemo()
    memo.record_approved(["make"])
    memo.record_approved(("make",))

    assert len(memo) == 1


def test_memos_are_independent() -> None:
    first = ApprovedCommandMemo()
    second = ApprovedCommandMemo()
    first.record_approved(["make"])

    assert second.is_approved(["make"]) is False


def test_concurrent_inserts_are_all_visible() -> None:
    memo = ApprovedCommandMemo()
    start = threading.Barrier(8)

    def worker(index: int) -> None:
        start.wait()
        for step in range(50):
            memo.record_approved(["job", str(index), str(step)])
            memo.record_approved(["shared"])

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(memo) == 8 * 50 + 1
    assert memo.is_approved(["shared"])
