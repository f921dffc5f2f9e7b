"""Tests for file-system helpers."""

import errno
import os
import shutil
import stat
from pathlib import Path
from unittest.mock import patch

import pytest

from opskit import fs
from opskit.errors import ConfigurationError, InvalidInputError, ProcessError
from opskit.fs import OverwritePolicy


def test_unique_path_skips_taken_names(tmp_path):
    """Test that numeric suffixes go before the extension."""
    (tmp_path / "report.txt").write_text("a")
    (tmp_path / "report 1.txt").write_text("b")

    assert fs.unique_path_in(tmp_path, "report.txt") == tmp_path / "report 2.txt"


def test_unique_path_returns_original_when_free(tmp_path):
    assert fs.unique_path_in(tmp_path, "notes.md") == tmp_path / "notes.md"


def test_unique_path_without_extension(tmp_path):
    (tmp_path / "README").write_text("x")

    assert fs.unique_path_in(tmp_path, "README") == tmp_path / "README 1"


@pytest.fixture
def source_and_target(tmp_path):
    src_dir = tmp_path / "src"
    dst_dir = tmp_path / "dst"
    src_dir.mkdir()
    dst_dir.mkdir()
    src = src_dir / "data.bin"
    src.write_bytes(b"new content")
    return src, dst_dir


def test_move_reject_leaves_both_files(source_and_target):
    """Test that REJECT raises and touches neither file."""
    src, dst_dir = source_and_target
    existing = dst_dir / "data.bin"
    existing.write_bytes(b"old content")

    with pytest.raises(InvalidInputError):
        fs.move_file_into_directory(src, dst_dir, OverwritePolicy.REJECT)

    assert src.read_bytes() == b"new content"
    assert existing.read_bytes() == b"old content"


def test_move_into_new_directory(source_and_target, tmp_path):
    src, _ = source_and_target
    target_dir = tmp_path / "created" / "deep"

    dest = fs.move_file_into_directory(src, target_dir)

    assert dest == target_dir / "data.bin"
    assert dest.read_bytes() == b"new content"
    assert not src.exists()


def test_move_replace_overwrites(source_and_target):
    src, dst_dir = source_and_target
    (dst_dir / "data.bin").write_bytes(b"old content")

    dest = fs.move_file_into_directory(src, dst_dir, OverwritePolicy.REPLACE)

    assert dest.read_bytes() == b"new content"
    assert not src.exists()


def test_move_replace_stages_beside_target(source_and_target):
    """Test that a replacing move goes through a temp file next to the target."""
    src, dst_dir = source_and_target
    (dst_dir / "data.bin").write_bytes(b"old content")
    real_move = shutil.move

    with patch("opskit.fs.shutil.move", side_effect=real_move) as mock_move:
        dest = fs.move_file_into_directory(src, dst_dir, OverwritePolicy.REPLACE)

    mock_move.assert_called_once_with(str(src), str(dst_dir / "data.bin_temp"))
    assert dest.read_bytes() == b"new content"
    assert sorted(os.listdir(dst_dir)) == ["data.bin"]
    assert not src.exists()


def test_move_replace_restores_source_when_swap_fails(source_and_target):
    src, dst_dir = source_and_target
    existing = dst_dir / "data.bin"
    existing.write_bytes(b"old content")

    with patch("opskit.fs.os.replace", side_effect=OSError("sharing violation")):
        with pytest.raises(OSError, match="sharing violation"):
            fs.move_file_into_directory(src, dst_dir, OverwritePolicy.REPLACE)

    assert src.read_bytes() == b"new content"
    assert existing.read_bytes() == b"old content"
    assert sorted(os.listdir(dst_dir)) == ["data.bin"]


def test_move_replace_if_different_discards_identical_source(source_and_target):
    """Test that an identical target is kept and the source dropped."""
    src, dst_dir = source_and_target
    existing = dst_dir / "data.bin"
    existing.write_bytes(b"new content")
    mtime = existing.stat().st_mtime_ns

    dest = fs.move_file_into_directory(src, dst_dir, OverwritePolicy.REPLACE_IF_DIFFERENT)

    assert dest == existing
    assert not src.exists()
    assert existing.stat().st_mtime_ns == mtime


def test_move_replace_if_different_replaces_changed_target(source_and_target):
    src, dst_dir = source_and_target
    # Same size, different bytes
    (dst_dir / "data.bin").write_bytes(b"old content")

    dest = fs.move_file_into_directory(src, dst_dir, OverwritePolicy.REPLACE_IF_DIFFERENT)

    assert dest.read_bytes() == b"new content"
    assert not src.exists()


def test_move_make_unique_renames(source_and_target):
    src, dst_dir = source_and_target
    (dst_dir / "data.bin").write_bytes(b"old content")

    dest = fs.move_file_into_directory(src, dst_dir, OverwritePolicy.MAKE_UNIQUE)

    assert dest == dst_dir / "data 1.bin"
    assert dest.read_bytes() == b"new content"
    assert (dst_dir / "data.bin").read_bytes() == b"old content"


def test_move_missing_source(tmp_path):
    with pytest.raises(InvalidInputError):
        fs.move_file_into_directory(tmp_path / "ghost.txt", tmp_path / "out")


def test_delete_directory_with_read_only_contents(tmp_path):
    """Test that read-only files and directories do not block deletion."""
    root = tmp_path / "tree"
    sub = root / "sub"
    sub.mkdir(parents=True)
    ro_file = sub / "locked.txt"
    ro_file.write_text("read only")
    ro_file.chmod(stat.S_IREAD)
    sub.chmod(stat.S_IREAD | stat.S_IEXEC)

    fs.delete_directory(root, delay=0)

    assert not root.exists()


def test_delete_directory_strips_read_only_on_permission_error(tmp_path):
    """Test that access-denied errors trigger read-only clearing, not a wait."""
    root = tmp_path / "tree"
    root.mkdir()
    (root / "f.txt").write_text("x")
    real_rmtree = shutil.rmtree
    calls = []

    def flaky_rmtree(path):
        calls.append(path)
        if len(calls) == 1:
            raise PermissionError("access denied")
        real_rmtree(path)

    with (
        patch("opskit.fs.shutil.rmtree", side_effect=flaky_rmtree),
        patch("opskit.fs.remove_read_only_attributes") as mock_strip,
    ):
        fs.delete_directory(root, delay=1000)

    mock_strip.assert_called_once_with(root)
    assert len(calls) == 2
    assert not root.exists()


def test_delete_directory_waits_on_locked_file(tmp_path, token):
    """Test that transient I/O errors wait the fixed delay and retry."""
    root = tmp_path / "tree"
    root.mkdir()
    real_rmtree = shutil.rmtree
    calls = []

    def flaky_rmtree(path):
        calls.append(path)
        if len(calls) < 3:
            raise OSError("file in use")
        real_rmtree(path)

    with patch("opskit.fs.shutil.rmtree", side_effect=flaky_rmtree):
        fs.delete_directory(root, delay=2.5, cancellation=token)

    assert token.waits == [2.5, 2.5]
    assert not root.exists()


def test_delete_directory_waits_on_sharing_violation(tmp_path, token):
    """Test that a PermissionError carrying winerror 32 is treated as a locked file."""
    root = tmp_path / "tree"
    root.mkdir()
    real_rmtree = shutil.rmtree
    calls = []

    def locked_rmtree(path):
        calls.append(path)
        if len(calls) < 3:
            err = PermissionError(13, "being used by another process")
            err.winerror = 32
            raise err
        real_rmtree(path)

    with (
        patch("opskit.fs.shutil.rmtree", side_effect=locked_rmtree),
        patch("opskit.fs.remove_read_only_attributes") as mock_strip,
    ):
        fs.delete_directory(root, delay=2.5, cancellation=token)

    mock_strip.assert_not_called()
    assert token.waits == [2.5, 2.5]
    assert not root.exists()


def test_delete_directory_strips_read_only_on_eacces(tmp_path, token):
    root = tmp_path / "tree"
    root.mkdir()
    real_rmtree = shutil.rmtree
    calls = []

    def denied_rmtree(path):
        calls.append(path)
        if len(calls) == 1:
            raise OSError(errno.EACCES, "access denied")
        real_rmtree(path)

    with (
        patch("opskit.fs.shutil.rmtree", side_effect=denied_rmtree),
        patch("opskit.fs.remove_read_only_attributes") as mock_strip,
    ):
        fs.delete_directory(root, delay=2.5, cancellation=token)

    mock_strip.assert_called_once_with(root)
    assert token.waits == []


@pytest.mark.parametrize(
    "error, denied",
    [
        (PermissionError(errno.EACCES, "denied"), True),
        (OSError(errno.EPERM, "not permitted"), True),
        (OSError(errno.EBUSY, "busy"), False),
        (OSError("file in use"), False),
    ],
)
def test_is_access_denied(error, denied):
    assert fs.is_access_denied(error) is denied


def test_is_access_denied_ignores_locked_winerrors():
    for code in (32, 33):
        err = PermissionError(13, "locked")
        err.winerror = code
        assert not fs.is_access_denied(err)


def test_delete_directory_gives_up(tmp_path, token):
    root = tmp_path / "tree"
    root.mkdir()

    with patch("opskit.fs.shutil.rmtree", side_effect=OSError("still locked")):
        with pytest.raises(OSError, match="still locked"):
            fs.delete_directory(root, retries=2, delay=1, cancellation=token)

    assert token.waits == [1, 1]


def test_delete_directory_ignores_blank_and_missing(tmp_path):
    fs.delete_directory("")
    fs.delete_directory(None)
    fs.delete_directory(tmp_path / "missing")


def test_remove_read_only_attributes(tmp_path):
    f = tmp_path / "ro.txt"
    f.write_text("x")
    f.chmod(stat.S_IREAD)

    fs.remove_read_only_attributes(tmp_path)

    assert f.stat().st_mode & stat.S_IWRITE


def test_delete_handles_files_and_directories(tmp_path):
    f = tmp_path / "file.txt"
    f.write_text("x")
    d = tmp_path / "dir"
    (d / "inner").mkdir(parents=True)

    fs.delete(f)
    fs.delete(d)
    fs.delete(tmp_path / "missing")

    assert not f.exists()
    assert not d.exists()


def test_initialise_directory_empties_existing(tmp_path):
    d = tmp_path / "work"
    d.mkdir()
    (d / "stale.txt").write_text("x")

    fs.initialise_directory(d)

    assert d.is_dir()
    assert list(d.iterdir()) == []


def test_copy_file_into_directory(tmp_path):
    src = tmp_path / "a.txt"
    src.write_text("hello")
    out = tmp_path / "out"
    out.mkdir()

    dest = fs.copy_file(src, out)

    assert dest == out / "a.txt"
    with pytest.raises(FileExistsError):
        fs.copy_file(src, out)
    fs.copy_file(src, out, force=True)


def test_write_file_safely_lines_and_no_temp(tmp_path):
    """Test that lines are written atomically and no temp file remains."""
    target = tmp_path / "out.txt"
    target.write_text("old")

    fs.write_file_safely(target, ["one", "two"])

    assert target.read_text() == "one\ntwo\n"
    assert os.listdir(tmp_path) == ["out.txt"]


def test_write_file_safely_retries(tmp_path):
    target = tmp_path / "out.txt"
    real_replace = os.replace
    calls = []

    def flaky_replace(src, dst):
        calls.append(dst)
        if len(calls) == 1:
            raise OSError("sharing violation")
        real_replace(src, dst)

    with patch("opskit.fs.os.replace", side_effect=flaky_replace):
        fs.write_file_safely(target, "content", delay=0)

    assert target.read_text() == "content"
    assert len(calls) == 2
    assert not (tmp_path / "out.txt_temp").exists()


def test_clean_filename():
    assert fs.clean_filename('a<b>c:d"e/f\\g|h?i*j') == "a_b_c_d_e_f_g_h_i_j"
    assert fs.clean_filename("  trailing dots... ") == "trailing dots"


def test_search_up_for(tmp_path):
    (tmp_path / "conf").mkdir()
    (tmp_path / "conf" / "resources.json").write_text("{}")
    start = tmp_path / "a" / "b" / "c"
    start.mkdir(parents=True)

    found = fs.search_up_for("resources.json", start, under_subdir="conf")

    assert found.resolve() == (tmp_path / "conf" / "resources.json").resolve()
    assert fs.try_search_up_for("nope-not-here.json", start) is None
    with pytest.raises(ConfigurationError):
        fs.search_up_for("nope-not-here.json", start)


def test_ensure_file_exists(tmp_path):
    with pytest.raises(ConfigurationError):
        fs.ensure_file_exists(tmp_path / "missing")


def test_delete_to_recycle_bin_uses_send2trash(tmp_path):
    f = tmp_path / "bin-me.txt"
    f.write_text("x")

    with patch("opskit.fs.send2trash") as mock_trash:
        fs.delete_to_recycle_bin(f)
        fs.delete_to_recycle_bin(tmp_path / "missing")
        fs.delete_to_recycle_bin("")

    mock_trash.assert_called_once_with(str(f))


def test_recycle_bin_kind_checks(tmp_path):
    f = tmp_path / "file.txt"
    f.write_text("x")

    with pytest.raises(InvalidInputError):
        fs.delete_file_to_recycle_bin(tmp_path)
    with pytest.raises(InvalidInputError):
        fs.delete_dir_to_recycle_bin(f)


@pytest.mark.parametrize("exit_code", [0, 1, 2, 3])
def test_robocopy_success_codes(tmp_path, exit_code):
    with patch("opskit.fs.shell.run_live", return_value=exit_code) as mock_run:
        assert fs.copy_without_mirror(tmp_path, tmp_path / "dest") == exit_code

    args = mock_run.call_args[0]
    assert args[0] == "robocopy"
    assert "/E" in args


def test_robocopy_failure_code(tmp_path):
    with patch("opskit.fs.shell.run_live", return_value=8):
        with pytest.raises(ProcessError):
            fs.copy_with_mirror(tmp_path, tmp_path / "dest")


def test_robocopy_missing_source(tmp_path):
    with pytest.raises(InvalidInputError):
        fs.copy_without_mirror(tmp_path / "missing", tmp_path / "dest")


def test_files_identical(tmp_path):
    a, b, c = (tmp_path / n for n in "abc")
    a.write_bytes(b"same")
    b.write_bytes(b"same")
    c.write_bytes(b"diff")

    assert fs.files_identical(a, b)
    assert not fs.files_identical(a, c)
    assert not fs.files_identical(a, Path(__file__))


def test_create_directory_is_idempotent(tmp_path):
    target = tmp_path / "a" / "b"

    assert fs.create_directory(target) == target
    assert fs.create_directory(target) == target
    assert fs.exists(target)
    assert not fs.exists(tmp_path / "c")


def test_robocopy_passes_cancellation(tmp_path, token):
    with patch("opskit.fs.shell.run_live", return_value=0) as mock_run:
        fs.copy_with_mirror(tmp_path, tmp_path / "dest", token)

    assert mock_run.call_args.kwargs["cancellation"] is token
