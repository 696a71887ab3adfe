import logging
import os
import subprocess
from enum import Enum
from pathlib import Path

from .constants import (
    APP_NAME,
    COMMIT_AUTHOR_EMAIL,
    COMMIT_AUTHOR_NAME,
    DEFAULT_BRANCH,
    DEFAULT_GIT_TIMEOUT,
)
from .errors import StoreAccessError, StoreMergeConflict

logger = logging.getLogger(APP_NAME)


class PullOutcome(str, Enum):
    """How a successful pull changed the local branch."""

    UP_TO_DATE = "up_to_date"
    FAST_FORWARD = "fast_forward"


def _identity_env() -> dict[str, str]:
    """Environment pinning author and committer to the fixed gsb identity."""
    env = os.environ.copy()
    env["GIT_AUTHOR_NAME"] = COMMIT_AUTHOR_NAME
    env["GIT_AUTHOR_EMAIL"] = COMMIT_AUTHOR_EMAIL
    env["GIT_COMMITTER_NAME"] = COMMIT_AUTHOR_NAME
    env["GIT_COMMITTER_EMAIL"] = COMMIT_AUTHOR_EMAIL
    return env


def _network_env() -> dict[str, str]:
    """Environment for unattended network operations (no prompts)."""
    env = os.environ.copy()
    env["GIT_SSH_COMMAND"] = "ssh -o BatchMode=yes"
    env["GIT_TERMINAL_PROMPT"] = "0"
    return env


class GitRepo:
    """A wrapper around the Git command-line interface for the backup store.

    The store is an ordinary repository whose working tree holds the collected
    items. This class stages and commits that tree under a fixed identity and
    pulls remote updates with a fast-forward-only policy.

    Attributes:
        path (Path): The file system path to the repository root.
        timeout (int): Seconds allowed for network operations.
    """

    def __init__(self, path: Path, timeout: int = DEFAULT_GIT_TIMEOUT):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the repository root directory.
            timeout (int): Seconds allowed for fetch and push.

        Raises:
            StoreAccessError: If the specified path does not contain a .git directory.
        """
        self.path = path
        self.timeout = timeout
        if not (self.path / ".git").exists():
            raise StoreAccessError(f"Not a git repository: {self.path}")

    def _run(
        self,
        args: list[str],
        capture: bool = True,
        env: dict | None = None,
        timeout: int | None = None,
    ) -> str:
        """Executes a Git command within the repository context.

        Args:
            args (list[str]): A list of arguments to pass to the git command.
            capture (bool, optional):   Whether to capture and return stdout.
                                        Defaults to True.
            env (Optional[dict], optional): Environment variables to pass to the
                                            subprocess. Defaults to None.
            timeout (Optional[int], optional): Seconds before the command is
                                               abandoned. Defaults to None.

        Returns:
            str:    The stripped stdout of the command if capture is True,
                    otherwise an empty string.

        Raises:
            StoreAccessError: If git is missing, times out, or exits non-zero.
        """
        try:
            res = subprocess.run(
                ["git", *args],
                cwd=self.path,
                capture_output=capture,
                text=True,
                check=True,
                env=env,
                timeout=timeout,
            )
            return res.stdout.strip() if capture else ""
        except subprocess.CalledProcessError as e:
            raise StoreAccessError(f"Git error: {(e.stderr or '').strip() or e}") from e
        except subprocess.TimeoutExpired as e:
            raise StoreAccessError(
                f"Git error: 'git {' '.join(args)}' timed out after {timeout}s"
            ) from e
        except OSError as e:
            raise StoreAccessError(f"Git error: could not run git: {e}") from e

    def _succeeds(self, args: list[str]) -> bool:
        """Runs a Git predicate command and reports whether it exited with 0."""
        try:
            res = subprocess.run(
                ["git", *args], cwd=self.path, capture_output=True, text=True
            )
        except OSError as e:
            raise StoreAccessError(f"Git error: could not run git: {e}") from e
        return res.returncode == 0

    @classmethod
    def init(cls, path: Path, branch: str = DEFAULT_BRANCH) -> "GitRepo":
        """Creates a store at `path` whose HEAD is resolvable.

        An existing repository is reused. When HEAD is unborn, HEAD is pointed
        at `branch` and a root commit of the current working tree is created.

        Args:
            path (Path): The directory to initialize.
            branch (str): The branch HEAD should point to.

        Returns:
            GitRepo: The initialized repository.
        """
        path.mkdir(parents=True, exist_ok=True)
        if not (path / ".git").exists():
            try:
                subprocess.run(
                    ["git", "init"], cwd=path, capture_output=True, text=True, check=True
                )
            except (subprocess.CalledProcessError, OSError) as e:
                raise StoreAccessError(f"Git error: could not init {path}: {e}") from e
            logger.info(f"Initialized git repository in {path}")

        repo = cls(path)
        if repo.rev_parse("HEAD") is None:
            repo._run(["symbolic-ref", "HEAD", f"refs/heads/{branch}"])
            repo.add_all()
            tree_oid = repo.write_tree()
            commit_oid = repo.commit_tree(tree_oid, [], "gsb init")
            repo.update_ref("HEAD", commit_oid)
            logger.info(f"Created root commit {commit_oid[:8]} on {branch}")
        return repo

    def current_branch(self) -> str:
        """Retrieves the name of the currently checked-out branch.

        Returns:
            str: The name of the current branch (empty when detached).
        """
        return self._run(["branch", "--show-current"])

    def add_all(self) -> None:
        """
        Stages all changes (modified, deleted, and untracked files)
        in the working directory.
        """
        self._run(["add", "-A"], capture=False)

    def add_remote(self, name: str, url: str) -> None:
        """Registers a remote repository URL under `name`."""
        self._run(["remote", "add", name, url], capture=False)

    def checkout(self, branch: str, force: bool = False) -> None:
        """Checks out a branch, optionally discarding local changes.

        Args:
            branch (str): The target branch name or commit hash.
            force (bool, optional): Whether to force the checkout (discarding changes).
                                    Defaults to False.
        """
        cmd = ["checkout"]
        if force:
            cmd.append("-f")
        cmd.append(branch)
        self._run(cmd)

    def rev_parse(self, rev: str) -> str | None:
        """Resolves a revision (tag, branch, relative ref) to a full SHA-1 hash.

        Args:
            rev (str): The revision to parse (e.g., 'HEAD', 'FETCH_HEAD').

        Returns:
            Optional[str]:  The full SHA-1 hash,
                            or None if the revision could not be resolved.
        """
        try:
            return self._run(["rev-parse", "--verify", "--quiet", rev])
        except StoreAccessError as e:
            logger.debug(f"rev-parse failed for '{rev}': {e}")
            return None

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """Checks whether `ancestor` is reachable from `descendant`."""
        return self._succeeds(["merge-base", "--is-ancestor", ancestor, descendant])

    def write_tree(self) -> str:
        """Creates a tree object from the current index.

        Returns:
            str: The SHA-1 hash of the created tree object.
        """
        return self._run(["write-tree"])

    def commit_tree(self, tree: str, parents: list[str], message: str) -> str:
        """Creates a commit object from a tree object under the gsb identity.

        Args:
            tree (str): The tree SHA-1 to commit.
            parents (list[str]): A list of parent commit SHA-1s.
            message (str): The commit message.

        Returns:
            str: The SHA-1 hash of the new commit.
        """
        cmd = ["commit-tree", tree, "-m", message]
        for p in parents:
            cmd.extend(["-p", p])
        return self._run(cmd, env=_identity_env())

    def update_ref(
        self, ref: str, new_oid: str, old_oid: str | None = None, reason: str = "gsb"
    ) -> None:
        """Safely updates a reference to a new object ID.

        Args:
            ref (str): The reference to update (e.g., 'HEAD', 'refs/heads/main').
            new_oid (str): The new SHA-1 hash.
            old_oid (Optional[str], optional): The expected old SHA-1 hash. If provided,
                                               the update will fail if the current ref
                                               does not match this value.
            reason (str, optional): The reflog message.
        """
        cmd = ["update-ref", "-m", reason, ref, new_oid]
        if old_oid:
            cmd.append(old_oid)
        self._run(cmd)

    def commit_all(self, message: str) -> str | None:
        """Stages the whole working tree and commits it if it changed.

        Args:
            message (str): The commit message.

        Returns:
            str | None: The new commit SHA-1, or None if the tree is unchanged.

        Raises:
            StoreAccessError: If HEAD cannot be resolved or git fails.
        """
        head = self.rev_parse("HEAD")
        if head is None:
            raise StoreAccessError(
                f"HEAD is not resolvable in {self.path}; run 'gsb init' first."
            )

        self.add_all()
        tree_oid = self.write_tree()
        if self._run(["rev-parse", f"{head}^{{tree}}"]) == tree_oid:
            logger.info("No changes to commit.")
            return None

        commit_oid = self.commit_tree(tree_oid, [head], message)
        self.update_ref("HEAD", commit_oid, head, reason=f"commit: {message}")
        logger.info(f"Committed {commit_oid[:8]}: {message}")
        return commit_oid

    def fetch(self, remote: str, branch: str) -> str:
        """Fetches `branch` from `remote` and returns the fetched commit."""
        logger.info(f"Fetching '{branch}' from remote '{remote}'...")
        self._run(["fetch", remote, branch], env=_network_env(), timeout=self.timeout)
        fetched = self.rev_parse("FETCH_HEAD")
        if fetched is None:
            raise StoreAccessError(f"Fetch of '{remote}/{branch}' produced no FETCH_HEAD")
        return fetched

    def pull(self, remote: str, branch: str) -> PullOutcome:
        """Fetches `branch` and fast-forwards the local branch to it.

        Local uncommitted changes are discarded on fast-forward: the working
        tree of the store is expected to be clean between cycles.

        Args:
            remote (str): The remote name.
            branch (str): The branch to pull.

        Returns:
            PullOutcome: UP_TO_DATE or FAST_FORWARD.

        Raises:
            StoreMergeConflict: If local and remote histories diverged.
            StoreAccessError: If fetching or updating fails.
        """
        fetched = self.fetch(remote, branch)
        head = self.rev_parse("HEAD")

        if head is not None and (fetched == head or self.is_ancestor(fetched, head)):
            logger.info("Already up-to-date.")
            return PullOutcome.UP_TO_DATE

        if head is None or self.is_ancestor(head, fetched):
            logger.info(f"Fast-forwarding {branch} to {fetched[:8]}...")
            ref = f"refs/heads/{branch}"
            self.update_ref(ref, fetched, self.rev_parse(ref), reason="pull: Fast-forward")
            self.checkout(branch, force=True)
            logger.info("Pull successful.")
            return PullOutcome.FAST_FORWARD

        raise StoreMergeConflict(remote, branch)

    def push(self, remote: str, branch: str) -> None:
        """Pushes the local branch to `remote`."""
        logger.info(f"Pushing '{branch}' to remote '{remote}'...")
        self._run(
            ["push", remote, f"refs/heads/{branch}:refs/heads/{branch}"],
            env=_network_env(),
            timeout=self.timeout,
        )
