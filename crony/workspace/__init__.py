"""Git workspaces for crontab repositories."""

from .git import GitError, Repository, Workdir

__all__ = [
    "GitError",
    "Repository",
    "Workdir",
]
