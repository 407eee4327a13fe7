"""Safe Git command execution only"""
import asyncio
import os
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

from .git_types import CommandResult, GitCommandError, GitSecurityError, GitTimeoutError


def safe_git_environment(extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """Environment for git child processes, without secrets from ours"""
    env = {
        k: v
        for k, v in os.environ.items()
        if k.startswith(("PATH", "HOME", "USER", "LANG", "LC_", "TMPDIR"))
    }
    env.update({
        'GIT_TERMINAL_PROMPT': '0',  # Disable prompts
        'GIT_ASKPASS': '/bin/echo',   # Disable password prompts
    })
    if extra:
        env.update(extra)
    return env


class GitCommandExecutor:
    """Runs short-lived git commands (init, archive, version)"""

    ALLOWED_COMMANDS = {'init', 'archive', '--version'}

    def __init__(self, git_binary: str = 'git', timeout: float = 300):
        """
        Initialize executor

        Args:
            git_binary: Path to git binary
            timeout: Command timeout in seconds
        """
        self.git_binary = git_binary
        self.timeout = timeout

    async def execute(
        self,
        args: List[str],
        cwd: Optional[Path] = None,
        input_data: Optional[bytes] = None,
        env: Optional[Dict[str, str]] = None
    ) -> CommandResult:
        """
        Execute Git command safely

        Args:
            args: Git command arguments (without 'git')
            cwd: Working directory
            input_data: Input to send to command
            env: Extra environment variables

        Returns:
            CommandResult with output

        Raises:
            GitSecurityError: If command is not allowed
            GitCommandError: If command fails
            GitTimeoutError: If command times out
        """
        if not args or args[0] not in self.ALLOWED_COMMANDS:
            raise GitSecurityError(f"Command not allowed: {args[0] if args else 'empty'}")

        self._validate_args_security(args)

        cmd = [self.git_binary] + args

        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=subprocess.PIPE if input_data else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd,
            env=safe_git_environment(env)
        )

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(input_data),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise GitTimeoutError(' '.join(args), self.timeout)

        result = CommandResult(
            exit_code=process.returncode,
            stdout=stdout,
            stderr=stderr
        )

        if not result.success:
            raise GitCommandError(
                ' '.join(args),
                result.exit_code,
                stderr.decode('utf-8', errors='replace')
            )

        return result

    def _validate_args_security(self, args: List[str]) -> None:
        """
        Validate command arguments for security

        Raises:
            GitSecurityError: If arguments are unsafe
        """
        dangerous_chars = ['&', '|', ';', '$', '`', '\n', '\r', '\x00', '<', '>']

        for arg in args:
            for char in dangerous_chars:
                if char in arg:
                    raise GitSecurityError(f"Unsafe character {char!r} in argument: {arg}")

            if arg.startswith('--') and '=' in arg:
                option_name = arg.split('=', 1)[0]
                if option_name not in ['--format', '--prefix']:
                    raise GitSecurityError(f"Unsafe option: {arg}")

        # Refs and paths must never be read as options
        for arg in args[1:]:
            if arg.startswith('-') and not arg.startswith('--'):
                raise GitSecurityError(f"Unsafe argument: {arg}")
