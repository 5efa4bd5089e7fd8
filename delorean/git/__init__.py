"""Git operations module.

Usage:
    from delorean.git import Repository, clone

    repo = Repository(Path("/path/to/repo"))
    if repo.is_clean():
        print(repo.current_branch())
"""

from delorean.git.repository import (
    GitError,
    GitStatus,
    Repository,
    StatusEntry,
    basic_auth_header,
    clone,
)

__all__ = [
    "GitError",
    "GitStatus",
    "Repository",
    "StatusEntry",
    "basic_auth_header",
    "clone",
]
