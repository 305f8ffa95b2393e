from __future__ import annotations

import pytest

from execguard.execution import PatchError, apply_patch, execute_patch, parse_patch


def _patch(*lines: str) -> str:
    return "\n".join(["*** Begin Patch", *lines, "*** End Patch"])


def test_parse_patch_reads_all_operations() -> None:
    changes = parse_patch(
        _patch(
            "*** Add File: new.txt",
            "+hello",
            "*** Delete File: old.txt",
            "*** Update File: app.py",
            "*** Move to: main.py",
            "@@ def main():",
            "-    pass",
            "+    run()",
        )
    )

    assert [(change.kind, change.path) for change in changes] == [
        ("add", "new.txt"),
        ("delete", "old.txt"),
        ("update", "app.py"),
    ]
    assert changes[0].content == "hello\n"
    assert changes[2].move_to == "main.py"
    assert changes[2].hunks[0].context == "def main():"


@pytest.mark.parametrize(
    "text",
    [
        "",
        "*** Add File: x\n+y\n*** End Patch",
        "*** Begin Patch\n*** Add File: x\n+y",
        _patch(),
        _patch("*** Frobnicate File: x"),
        _patch("*** Add File: x", "missing plus"),
        _patch("*** Update File: x"),
    ],
)
def test_parse_patch_rejects_malformed_bodies(text: str) -> None:
    with pytest.raises(PatchError):
        parse_patch(text)


def test_apply_patch_adds_updates_and_deletes(tmp_path) -> None:
    (tmp_path / "app.py").write_text("def main():\n    print('hi')\n\nmain()\n", encoding="utf-8")
    (tmp_path / "old.txt").write_text("bye\n", encoding="utf-8")

    summary = apply_patch(
        _patch(
            "*** Add File: docs/notes.md",
            "+# Notes",
            "+first",
            "*** Update File: app.py",
            "@@ def main():",
            "-    print('hi')",
            "+    print('hello')",
            "*** Delete File: old.txt",
        ),
        tmp_path,
    )

    assert summary == ["A docs/notes.md", "M app.py", "D old.txt"]
    assert (tmp_path / "docs" / "notes.md").read_text(encoding="utf-8") == "# Notes\nfirst\n"
    assert (tmp_path / "app.py").read_text(encoding="utf-8") == (
        "def main():\n    print('hello')\n\nmain()\n"
    )
    assert not (tmp_path / "old.txt").exists()


def test_apply_patch_moves_updated_file(tmp_path) -> None:
    (tmp_path / "a.py").write_text("x = 1\n", encoding="utf-8")

    summary = apply_patch(
        _patch("*** Update File: a.py", "*** Move to: pkg/b.py", "-x = 1", "+x = 2"),
        tmp_path,
    )

    assert summary == ["M pkg/b.py"]
    assert not (tmp_path / "a.py").exists()
    assert (tmp_path / "pkg" / "b.py").read_text(encoding="utf-8") == "x = 2\n"


def test_apply_patch_tolerates_trailing_whitespace_drift(tmp_path) -> None:
    (tmp_path / "a.txt").write_text("alpha   \nbeta\n", encoding="utf-8")

    apply_patch(_patch("*** Update File: a.txt", " alpha", "-beta", "+gamma"), tmp_path)

    assert (tmp_path / "a.txt").read_text(encoding="utf-8") == "alpha\ngamma\n"


def test_apply_patch_end_of_file_hunk_targets_last_lines(tmp_path) -> None:
    (tmp_path / "a.txt").write_text("end\nmiddle\nend\n", encoding="utf-8")

    apply_patch(
        _patch("*** Update File: a.txt", "-end", "+finish", "*** End of File"),
        tmp_path,
    )

    assert (tmp_path / "a.txt").read_text(encoding="utf-8") == "end\nmiddle\nfinish\n"


def test_failed_hunk_leaves_tree_untouched(tmp_path) -> None:
    (tmp_path / "a.txt").write_text("one\n", encoding="utf-8")

    with pytest.raises(PatchError, match="does not match"):
        apply_patch(
            _patch(
                "*** Add File: b.txt",
                "+new",
                "*** Update File: a.txt",
                "-two",
                "+three",
            ),
            tmp_path,
        )

    assert not (tmp_path / "b.txt").exists()
    assert (tmp_path / "a.txt").read_text(encoding="utf-8") == "one\n"


def test_execute_patch_reports_success(tmp_path) -> None:
    outcome = execute_patch(_patch("*** Add File: hello.txt", "+hello"), str(tmp_path))

    assert outcome.exit_code == 0
    assert outcome.stdout == "Success. Updated the following files:\nA hello.txt\n"
    assert outcome.stderr == ""


def test_execute_patch_reports_failure_as_data(tmp_path) -> None:
    outcome = execute_patch(_patch("*** Delete File: missing.txt"), str(tmp_path))

    assert outcome.exit_code == 1
    assert outcome.stdout == ""
    assert "cannot delete missing file: missing.txt" in outcome.stderr


def test_apply_patch_keeps_crlf_line_endings(tmp_path) -> None:
    (tmp_path / "win.txt").write_bytes(b"one\r\ntwo\r\nthree\r\n")

    apply_patch(_patch("*** Update File: win.txt", " one", "-two", "+2"), tmp_path)

    assert (tmp_path / "win.txt").read_bytes() == b"one\r\n2\r\nthree\r\n"


def test_failed_write_leaves_existing_files_untouched(tmp_path) -> None:
    (tmp_path / "a.txt").write_text("one\n", encoding="utf-8")
    (tmp_path / "blocker").write_text("not a directory\n", encoding="utf-8")

    with pytest.raises(OSError):
        apply_patch(
            _patch(
                "*** Update File: a.txt",
                "-one",
                "+two",
                "*** Add File: blocker/new.txt",
                "+new",
            ),
            tmp_path,
        )

    assert (tmp_path / "a.txt").read_text(encoding="utf-8") == "one\n"
    assert sorted(path.name for path in tmp_path.iterdir()) == ["a.txt", "blocker"]
