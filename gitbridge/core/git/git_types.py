"""Git-related type definitions"""
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Tuple

ZERO_ID = "0" * 40


class GitService(str, Enum):
    """Git services served over smart HTTP"""
    UPLOAD_PACK = "git-upload-pack"
    RECEIVE_PACK = "git-receive-pack"

    @property
    def subcommand(self) -> str:
        """Name of the git subcommand, e.g. ``upload-pack``"""
        return self.value[len("git-"):]


@dataclass(frozen=True)
class ServiceRequest:
    """Classification of a single smart HTTP call"""
    service: GitService
    is_advertisement: bool
    is_get_refs_discovery: bool
    repo_name: str
    full_repo_path: Path
    has_empty_body: bool = False

    @property
    def is_receive_pack(self) -> bool:
        return self.service == GitService.RECEIVE_PACK

    @property
    def should_run_hooks(self) -> bool:
        # An empty push body carries no ref update to hook on
        return self.is_receive_pack and not self.is_advertisement and not self.has_empty_body

    @property
    def content_type(self) -> str:
        kind = "advertisement" if self.is_advertisement else "result"
        return f"application/x-{self.service.value}-{kind}"


@dataclass(frozen=True)
class ReceivePackNegotiation:
    """First command line of a git-receive-pack request"""
    old_ref: str = ""
    new_ref: str = ""
    branch: str = ""
    capabilities: Tuple[str, ...] = ()
    agent: str = ""

    @classmethod
    def empty(cls) -> "ReceivePackNegotiation":
        return cls()

    @property
    def is_empty(self) -> bool:
        return not (self.old_ref or self.new_ref or self.branch)

    @property
    def is_create(self) -> bool:
        return bool(self.old_ref) and set(self.old_ref) == {"0"}

    @property
    def is_delete(self) -> bool:
        return bool(self.new_ref) and set(self.new_ref) == {"0"}

    def has_capability(self, name: str) -> bool:
        return name in self.capabilities


@dataclass
class CommandResult:
    """Result of Git command execution"""
    exit_code: int
    stdout: bytes
    stderr: bytes

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class GitError(Exception):
    """Base class for Git command errors"""
    pass


class GitCommandError(GitError):
    """Git command execution failed"""
    def __init__(self, command: str, exit_code: int, stderr: str):
        super().__init__(f"Git command '{command}' failed with exit code {exit_code}: {stderr}")
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr


class GitTimeoutError(GitError):
    """Git operation timed out"""
    def __init__(self, command: str, timeout: float):
        super().__init__(f"Git command '{command}' timed out after {timeout} seconds")
        self.command = command
        self.timeout = timeout


class GitSecurityError(GitError):
    """Security violation in Git operation"""
    pass
