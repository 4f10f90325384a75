"""Git-backed workspaces for crontab repositories.

A :class:`Repository` owns a master checkout cloned from the origin. Each
command run gets its own temporary branch checked out in a separate git
worktree, so runs share history with master but never each other's files.
Results are rebased onto master, fast-forwarded and pushed back to origin.
"""

import itertools
import logging
import shutil
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import Optional, Union


logger = logging.getLogger(__name__)


class GitError(Exception):
    """Exception raised when a git command fails."""

    def __init__(self, args, output: str, returncode: int):
        super().__init__(f"git {' '.join(args)} exited with {returncode}\n{output}")
        self.output = output
        self.returncode = returncode


def _temp_dir(root: Optional[Path] = None) -> Path:
    return Path(tempfile.mkdtemp(prefix="crony.", dir=root))


class Workdir:
    """A checkout of one branch. Operations on a workdir are serialized."""

    def __init__(self, repository: "Repository", branch: str, path: Path):
        self.repository = repository
        self.branch = branch
        self.path = path
        self._lock = threading.RLock()

    def __repr__(self) -> str:
        return f"Workdir(branch={self.branch!r}, path={str(self.path)!r})"

    def git(self, *args: str) -> str:
        """Run a git command in this workdir and return its combined output.

        Raises:
            GitError: If git exits non-zero
        """
        logger.debug("%s$ git %s", self.branch, " ".join(args))
        result = subprocess.run(
            ["git", *args],
            cwd=self.path,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )
        if result.returncode != 0:
            raise GitError(args, result.stdout, result.returncode)
        return result.stdout

    def pull(self) -> None:
        """Pull origin and rebase local commits on top of it.

        If that is not possible the rebase is aborted, leaving the workdir as
        it was, and the error is raised.
        """
        with self._lock:
            self._pull()

    def _pull(self) -> None:
        try:
            self.git("pull", "--rebase")
        except GitError:
            try:
                self.git("rebase", "--abort")
            except GitError:
                logger.debug("No rebase to abort in %s", self.branch)
            raise

    def fetch_head(self) -> None:
        """Overwrite the local branch with origin's and reset the tree.

        This drops any local changes, committed or not.
        """
        with self._lock:
            self.git("fetch", "origin", self.branch)
            self.git("reset", "--hard", "FETCH_HEAD")
            self.git("clean", "-df")

    def has_changes(self) -> bool:
        """Check for uncommitted changes, untracked files included."""
        with self._lock:
            return bool(self.git("status", "--porcelain").strip())

    def commit(self, message: str) -> None:
        """Stage everything and commit it."""
        with self._lock:
            self.git("add", ".")
            self.git("commit", "-a", "-m", message)

    def merge(self, other: "Workdir") -> None:
        """Rebase other onto this branch, then fast-forward to it."""
        with self._lock, other._lock:
            other.git("rebase", self.branch)
            self.git("merge", "--ff-only", other.branch)

    def push(self) -> None:
        """Push to origin, pulling and retrying once if rejected."""
        with self._lock:
            try:
                self.git("push", "origin", self.branch)
            except GitError as e:
                logger.warning("Push of %s rejected, pulling and retrying: %s", self.branch, e)
                self._pull()
                self.git("push", "origin", self.branch)

    def close(self) -> None:
        """Remove this workdir. Temporary branches are deleted as well."""
        master = self.repository.master
        with self._lock:
            if master is not self:
                with master._lock:
                    master.git("worktree", "remove", "--force", str(self.path))
                    master.git("branch", "-D", self.branch)
            shutil.rmtree(self.path, ignore_errors=True)


class Repository:
    """A local clone of a remote crontab repository."""

    def __init__(self, name: str, master_path: Path, branch: str = "master", root: Optional[Path] = None):
        self.name = name
        self.root = root
        self.master = Workdir(self, branch, master_path)
        self._counter = itertools.count()
        self._counter_lock = threading.Lock()

    @classmethod
    def clone(cls, name: str, origin: str, root: Optional[Union[str, Path]] = None) -> "Repository":
        """Create a local clone of a remote repository.

        Args:
            name: Display name used in logs
            origin: URL or path of the remote
            root: Directory for checkouts (system temp dir by default)

        Raises:
            GitError: If the clone fails
        """
        root = Path(root) if root is not None else None
        path = _temp_dir(root)
        logger.info("Cloning %s into %s", origin, path)
        result = subprocess.run(
            ["git", "clone", origin, str(path)],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )
        if result.returncode != 0:
            shutil.rmtree(path, ignore_errors=True)
            raise GitError(("clone", origin), result.stdout, result.returncode)

        repository = cls(name, path, root=root)
        repository.master.branch = repository.master.git("rev-parse", "--abbrev-ref", "HEAD").strip()
        return repository

    def _temp_branch_name(self) -> str:
        with self._counter_lock:
            return f"temp{next(self._counter)}"

    def branch(self) -> Workdir:
        """Create a temporary branch off master in a new worktree."""
        name = self._temp_branch_name()
        path = _temp_dir(self.root)
        # git worktree wants to create the directory itself
        path.rmdir()
        with self.master._lock:
            self.master.git("worktree", "add", "-b", name, str(path), self.master.branch)
        return Workdir(self, name, path)

    def close(self) -> None:
        self.master.close()
