"""Subprocess wrapper for git-upload-pack / git-receive-pack"""

import asyncio
import subprocess
import time
from typing import List, Optional

from gitbridge.core.exceptions import CommandExecutionFailure
from gitbridge.core.git.command_executor import safe_git_environment
from gitbridge.core.git.git_types import ServiceRequest
from gitbridge.infrastructure.git_metrics import git_command_duration_seconds
from gitbridge.infrastructure.logging import get_logger
from gitbridge.infrastructure.sinks import PacketSink

logger = get_logger(__name__)


class GitServiceProcess:
    """Runs a git service in stateless RPC mode and pipes its output to a sink"""

    def __init__(
        self,
        git_binary: str = "git",
        timeout: float = 300.0,
        chunk_size: int = 8192,
    ):
        self.git_binary = git_binary
        self.timeout = timeout
        self.chunk_size = chunk_size

    def build_command(self, request: ServiceRequest) -> List[str]:
        cmd = [self.git_binary, request.service.subcommand, "--stateless-rpc"]

        if request.is_advertisement:
            cmd.append("--advertise-refs")

        cmd.append(str(request.full_repo_path))
        return cmd

    async def run(self, request: ServiceRequest, stdin: bytes, sink: PacketSink) -> None:
        """
        Execute the service with stdin = request body, stdout -> sink.

        Raises:
            CommandExecutionFailure: spawn error, timeout or non-zero exit
        """
        cmd = self.build_command(request)
        command = " ".join(cmd[1:3])
        start_time = time.monotonic()

        logger.info(
            "git_service_starting",
            service=request.service.value,
            advertise_refs=request.is_advertisement,
            repository=request.repo_name,
        )

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=str(request.full_repo_path),
                env=safe_git_environment(),
                start_new_session=True,  # Own process group for cleanup
            )
        except OSError as e:
            logger.error("git_service_spawn_failed", command=command, error=str(e))
            self._observe(request, start_time, "error")
            raise CommandExecutionFailure(command, f"could not start {command}: {e}")

        try:
            return_code, stderr = await asyncio.wait_for(
                self._communicate(process, stdin, sink),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            await self.terminate(process)
            self._observe(request, start_time, "timeout")
            logger.error("git_service_timeout", command=command, timeout=self.timeout)
            raise CommandExecutionFailure(command, f"{command} timed out after {self.timeout} seconds")
        except asyncio.CancelledError:
            await self.terminate(process)
            self._observe(request, start_time, "cancelled")
            raise

        if stderr:
            logger.warning("git_service_stderr", command=command, stderr=stderr)

        if return_code != 0:
            self._observe(request, start_time, "error")
            logger.error("git_service_failed", command=command, return_code=return_code)
            raise CommandExecutionFailure(
                command,
                f"{command} exited with status {return_code}",
                exit_code=return_code,
            )

        self._observe(request, start_time, "success")
        logger.info(
            "git_service_completed",
            command=command,
            duration=round(time.monotonic() - start_time, 3),
        )

    async def _communicate(
        self,
        process: asyncio.subprocess.Process,
        stdin: bytes,
        sink: PacketSink,
    ) -> "tuple[int, str]":
        async def feed_input():
            try:
                if stdin:
                    process.stdin.write(stdin)
                    await process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError):
                # git stopped reading; its exit status tells what happened
                logger.debug("git_service_stdin_closed_early")
            finally:
                process.stdin.close()

        input_task = asyncio.create_task(feed_input())
        stderr_task = asyncio.create_task(process.stderr.read())

        try:
            while True:
                chunk = await process.stdout.read(self.chunk_size)
                if not chunk:
                    break
                sink.write(chunk)
                if sink.supports_flush:
                    sink.flush()

            await input_task
            stderr = await stderr_task
            return_code = await process.wait()
        finally:
            for task in (input_task, stderr_task):
                if not task.done():
                    task.cancel()

        return return_code, stderr.decode("utf-8", errors="replace").strip()

    async def terminate(self, process: Optional[asyncio.subprocess.Process]) -> None:
        """Terminate the subprocess, escalating to kill"""
        if process is None or process.returncode is not None:
            return

        try:
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=5.0)
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()
        except ProcessLookupError:
            pass  # Process already dead

        logger.info("git_service_terminated", pid=process.pid)

    @staticmethod
    def _observe(request: ServiceRequest, start_time: float, status: str) -> None:
        git_command_duration_seconds.labels(
            service=request.service.value, status=status
        ).observe(time.monotonic() - start_time)
