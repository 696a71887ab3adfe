import subprocess
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from git_sync_backup.errors import StoreAccessError, StoreMergeConflict
from git_sync_backup.git_wrapper import GitRepo, PullOutcome


def _git(path: Path, *args: str) -> str:
    res = subprocess.run(
        ["git", *args], cwd=path, capture_output=True, text=True, check=True
    )
    return res.stdout.strip()


@pytest.fixture
def upstream_and_clone(store: Path, tmp_path: Path) -> tuple[GitRepo, GitRepo]:
    """Builds a store and a clone of it, as two devices sharing one remote.

    Args:
        store (Path): The initialized store fixture, used as the remote.
        tmp_path (Path): Pytest fixture for a temporary directory.

    Returns:
        tuple[GitRepo, GitRepo]: The upstream store and the cloned store.
    """
    (store / "a.txt").write_text("v1")
    upstream = GitRepo(store)
    upstream.commit_all("first")

    clone_path = tmp_path / "clone"
    _git(tmp_path, "clone", "-q", str(store), str(clone_path))
    return upstream, GitRepo(clone_path)


# Mocked Command Layer


def test_not_a_repository(tmp_path: Path) -> None:
    """Verifies opening a plain directory raises StoreAccessError."""
    with pytest.raises(StoreAccessError, match="Not a git repository"):
        GitRepo(tmp_path)


def test_run_wraps_git_failure(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies a non-zero git exit surfaces as StoreAccessError with stderr.

    Args:
        tmp_path (Path): Pytest fixture for a temporary directory.
        mocker (MagicMock): Pytest fixture for mocking.
    """
    (tmp_path / ".git").mkdir()
    repo = GitRepo(tmp_path)
    mocker.patch(
        "subprocess.run",
        side_effect=subprocess.CalledProcessError(
            128, ["git", "status"], stderr="fatal: boom\n"
        ),
    )

    with pytest.raises(StoreAccessError, match="fatal: boom"):
        repo._run(["status"])


def test_run_wraps_timeout(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies a hung network operation surfaces as StoreAccessError."""
    (tmp_path / ".git").mkdir()
    repo = GitRepo(tmp_path, timeout=5)
    mocker.patch(
        "subprocess.run",
        side_effect=subprocess.TimeoutExpired(["git", "fetch"], 5),
    )

    with pytest.raises(StoreAccessError, match="timed out after 5s"):
        repo.fetch("origin", "main")


def test_fetch_uses_unattended_environment(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies fetch disables prompts and honours the configured timeout."""
    (tmp_path / ".git").mkdir()
    repo = GitRepo(tmp_path, timeout=42)
    mock_run = mocker.patch.object(repo, "_run", return_value="")
    mocker.patch.object(repo, "rev_parse", return_value="f" * 40)

    assert repo.fetch("origin", "main") == "f" * 40

    args, kwargs = mock_run.call_args
    assert args[0] == ["fetch", "origin", "main"]
    assert kwargs["timeout"] == 42
    assert kwargs["env"]["GIT_TERMINAL_PROMPT"] == "0"
    assert "BatchMode=yes" in kwargs["env"]["GIT_SSH_COMMAND"]


def test_pull_diverged_raises_conflict(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies diverged histories are refused without touching refs."""
    (tmp_path / ".git").mkdir()
    repo = GitRepo(tmp_path)
    mocker.patch.object(repo, "fetch", return_value="remote-oid")
    mocker.patch.object(repo, "rev_parse", return_value="local-oid")
    mocker.patch.object(repo, "is_ancestor", return_value=False)
    mock_update = mocker.patch.object(repo, "update_ref")

    with pytest.raises(StoreMergeConflict) as exc_info:
        repo.pull("origin", "main")

    assert exc_info.value.remote == "origin"
    assert exc_info.value.branch == "main"
    mock_update.assert_not_called()


def test_commit_all_requires_head(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies committing into a store with an unborn HEAD is refused."""
    (tmp_path / ".git").mkdir()
    repo = GitRepo(tmp_path)
    mocker.patch.object(repo, "rev_parse", return_value=None)

    with pytest.raises(StoreAccessError, match="HEAD is not resolvable"):
        repo.commit_all("msg")


# Real Git


def test_init_creates_root_commit(store: Path) -> None:
    """Verifies init leaves HEAD resolvable on the requested branch."""
    repo = GitRepo(store)

    assert repo.rev_parse("HEAD") is not None
    assert repo.current_branch() == "main"
    assert _git(store, "log", "-1", "--format=%an <%ae>") == "gsb <gsb@localhost>"


def test_init_is_reusable(store: Path) -> None:
    """Verifies re-initializing an existing store keeps its history."""
    head = GitRepo(store).rev_parse("HEAD")

    assert GitRepo.init(store, "main").rev_parse("HEAD") == head


def test_commit_all(store: Path) -> None:
    """Verifies changes are committed once and a clean tree is a no-op."""
    repo = GitRepo(store)
    parent = repo.rev_parse("HEAD")
    (store / "dir").mkdir()
    (store / "dir" / "file.txt").write_text("content")

    commit = repo.commit_all("gsb collect on dev at now")

    assert commit is not None
    assert repo.rev_parse("HEAD") == commit
    assert _git(store, "rev-parse", f"{commit}^") == parent
    assert _git(store, "log", "-1", "--format=%s") == "gsb collect on dev at now"
    assert _git(store, "log", "-1", "--format=%cn <%ce>") == "gsb <gsb@localhost>"
    assert repo.commit_all("again") is None
    assert repo.rev_parse("HEAD") == commit


def test_commit_all_records_deletions(store: Path) -> None:
    """Verifies files removed from the working tree are removed from the commit."""
    repo = GitRepo(store)
    (store / "gone.txt").write_text("x")
    repo.commit_all("add")
    (store / "gone.txt").unlink()

    repo.commit_all("remove")

    assert "gone.txt" not in _git(store, "ls-tree", "--name-only", "HEAD")


def test_pull_up_to_date(upstream_and_clone: tuple[GitRepo, GitRepo]) -> None:
    """Verifies pulling an unchanged remote reports UP_TO_DATE."""
    _, clone = upstream_and_clone

    assert clone.pull("origin", "main") is PullOutcome.UP_TO_DATE


def test_pull_local_ahead_is_up_to_date(
    upstream_and_clone: tuple[GitRepo, GitRepo],
) -> None:
    """Verifies a local branch ahead of the remote is not rewound."""
    _, clone = upstream_and_clone
    (clone.path / "local.txt").write_text("mine")
    local_head = clone.commit_all("local")

    assert clone.pull("origin", "main") is PullOutcome.UP_TO_DATE
    assert clone.rev_parse("HEAD") == local_head


def test_pull_fast_forward(upstream_and_clone: tuple[GitRepo, GitRepo]) -> None:
    """Verifies remote commits are fast-forwarded into branch and working tree."""
    upstream, clone = upstream_and_clone
    (upstream.path / "a.txt").write_text("v2")
    (upstream.path / "b.txt").write_text("new")
    remote_head = upstream.commit_all("second")

    assert clone.pull("origin", "main") is PullOutcome.FAST_FORWARD

    assert clone.rev_parse("HEAD") == remote_head
    assert clone.current_branch() == "main"
    assert (clone.path / "a.txt").read_text() == "v2"
    assert (clone.path / "b.txt").read_text() == "new"


def test_pull_diverged_real(upstream_and_clone: tuple[GitRepo, GitRepo]) -> None:
    """Verifies a real divergence raises StoreMergeConflict and keeps local HEAD."""
    upstream, clone = upstream_and_clone
    (upstream.path / "a.txt").write_text("remote edit")
    upstream.commit_all("remote")
    (clone.path / "a.txt").write_text("local edit")
    local_head = clone.commit_all("local")

    with pytest.raises(StoreMergeConflict):
        clone.pull("origin", "main")

    assert clone.rev_parse("HEAD") == local_head
    assert (clone.path / "a.txt").read_text() == "local edit"


def test_push_to_bare_remote(store: Path, tmp_path: Path) -> None:
    """Verifies push publishes the local branch to the remote."""
    bare = tmp_path / "remote.git"
    _git(tmp_path, "init", "-q", "--bare", str(bare))
    repo = GitRepo(store)
    repo.add_remote("origin", str(bare))

    repo.push("origin", "main")

    assert _git(bare, "rev-parse", "refs/heads/main") == repo.rev_parse("HEAD")
