"""Git protocol core module"""
from .command_executor import GitCommandExecutor
from .git_types import (
    GitService,
    ServiceRequest,
    ReceivePackNegotiation,
    CommandResult,
    GitError,
    GitCommandError,
    GitTimeoutError,
    GitSecurityError
)

__all__ = [
    'GitCommandExecutor',
    'GitService',
    'ServiceRequest',
    'ReceivePackNegotiation',
    'CommandResult',
    'GitError',
    'GitCommandError',
    'GitTimeoutError',
    'GitSecurityError'
]
