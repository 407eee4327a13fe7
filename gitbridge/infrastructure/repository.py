"""Bare repository lifecycle on the storage root"""

from pathlib import Path
from typing import Optional

from gitbridge.core.exceptions import RepositoryInitFailure
from gitbridge.core.git.command_executor import GitCommandExecutor
from gitbridge.core.git.git_types import GitError
from gitbridge.infrastructure.logging import get_logger

logger = get_logger(__name__)

BARE_REPOSITORY_MARKERS = ("HEAD", "objects", "refs")


class RepositoryLifecycle:
    """Existence checks, init-on-demand and archive export"""

    def __init__(self, executor: Optional[GitCommandExecutor] = None):
        self.executor = executor or GitCommandExecutor()

    def exists(self, path: Path) -> bool:
        return Path(path).exists()

    def is_bare_repository(self, path: Path) -> bool:
        path = Path(path)
        return all((path / marker).exists() for marker in BARE_REPOSITORY_MARKERS)

    async def init_bare(self, path: Path) -> None:
        """
        Create parent directories and initialize a bare repository.

        Calling this on an existing bare repository does nothing.

        Raises:
            RepositoryInitFailure: filesystem or git error
        """
        path = Path(path)

        if self.is_bare_repository(path):
            logger.debug("repository_already_initialized", path=str(path))
            return

        try:
            path.mkdir(parents=True, exist_ok=True, mode=0o755)
        except OSError as e:
            logger.error("repository_mkdir_failed", path=str(path), error=str(e))
            raise RepositoryInitFailure(
                "Could not create repository directory", details={"path": str(path)}
            )

        try:
            await self.executor.execute(['init', '--bare', str(path)])
        except (GitError, OSError) as e:
            # OSError: git binary missing or not executable
            logger.error("repository_init_failed", path=str(path), error=str(e))
            raise RepositoryInitFailure(details={"path": str(path)})

        logger.info("repository_created", path=str(path))

    async def archive(self, path: Path, ref: str) -> bytes:
        """
        Tar snapshot of ref, for post-receive hooks.

        Best effort: the push has already succeeded, so every failure is
        logged and an empty archive returned.
        """
        try:
            result = await self.executor.execute(['archive', '--format=tar', ref], cwd=Path(path))
        except (GitError, OSError) as e:
            logger.warning("repository_archive_failed", path=str(path), ref=ref, error=str(e))
            return b""

        return result.stdout
