"""Push hooks: context handed to hook code, policy interfaces and built-ins"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import httpx

from gitbridge.core.exceptions import HookRejected
from gitbridge.infrastructure.git_protocol import DEFAULT_STREAM_CODE, PktLine, StreamCode
from gitbridge.infrastructure.logging import get_logger
from gitbridge.infrastructure.sinks import PacketSink

logger = get_logger(__name__)


class HookEvent(str, Enum):
    """Points of the push lifecycle where hooks run"""

    PRE_RECEIVE = "pre-receive"
    PRE_CREATE = "pre-create"
    POST_RECEIVE = "post-receive"


@dataclass(frozen=True)
class PolicyDecision:
    accepted: bool
    reason: Optional[str] = None

    @classmethod
    def accept(cls) -> "PolicyDecision":
        return cls(True)

    @classmethod
    def reject(cls, reason: Optional[str] = None) -> "PolicyDecision":
        return cls(False, reason)

    @classmethod
    def coerce(cls, value: Union["PolicyDecision", bool, None]) -> "PolicyDecision":
        if isinstance(value, PolicyDecision):
            return value
        return cls.accept() if value else cls.reject()


class HookContext:
    """
    State of an ongoing push, handed to hook code.

    Anything written through the context reaches the pushing git client as
    side-band progress text ("remote: ..." lines).
    """

    def __init__(
        self,
        sink: PacketSink,
        repository: str,
        branch: str,
        commit: str,
        repo_exists: bool,
        old_ref: str = "",
        agent: str = "",
        capabilities: Tuple[str, ...] = (),
        authorization: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ):
        self._sink = sink
        self.repository = repository
        self.branch = branch
        self.commit = commit
        self.repo_exists = repo_exists
        self.old_ref = old_ref
        self.agent = agent
        self.capabilities = capabilities
        self.authorization = authorization
        self.correlation_id = correlation_id
        self.timestamp = datetime.now(timezone.utc)
        self.closed = False
        self.detached = False

    def _emit(self, stream_code: StreamCode, data: bytes) -> None:
        if self.closed:
            raise RuntimeError("hook context is closed")

        if self.detached:
            logger.info(
                "hook_output_after_response",
                repository=self.repository,
                stream=stream_code.name.lower(),
                text=data.decode("utf-8", errors="replace"),
            )
            return

        step = PktLine.MAX_SIDEBAND_DATA_LEN
        for offset in range(0, len(data), step):
            self._sink.write(PktLine.encode_sideband(stream_code, data[offset:offset + step]))

        if self._sink.supports_flush:
            self._sink.flush()

    def write(self, data: Union[bytes, str]) -> int:
        """Write raw progress text to the git client"""
        if isinstance(data, str):
            data = data.encode("utf-8")
        if data:
            self._emit(DEFAULT_STREAM_CODE, data)
        return len(data)

    def writef(self, fmt: str, *params: Any) -> None:
        self.write(fmt % params if params else fmt)

    def writeln(self, text: str) -> None:
        self.write(text + "\n")

    def fatal(self, message: str) -> None:
        """Send an error on the fatal channel; git aborts and prints it"""
        self._emit(StreamCode.FATAL, f"error: {message}\n".encode("utf-8"))

    def detach(self) -> None:
        """
        Hand the response over to the git process.

        git-receive-pack ends its output with its own flush packet, after
        which the client reads nothing more. Later hook output is logged
        instead, and close() no longer writes to the sink.
        """
        self.detached = True

    def close(self) -> None:
        """Terminate the hook stream with a flush packet (once)"""
        if self.closed:
            return
        if not self.detached:
            self._sink.write(PktLine.encode_flush())
            if self._sink.supports_flush:
                self._sink.flush()
        self.closed = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "repository": self.repository,
            "branch": self.branch,
            "commit": self.commit,
            "old_ref": self.old_ref,
            "repo_exists": self.repo_exists,
            "agent": self.agent,
            "capabilities": list(self.capabilities),
            "correlation_id": self.correlation_id,
            "timestamp": self.timestamp.isoformat(),
        }


class PreReceivePolicy(ABC):
    """Decides whether a push may proceed"""

    name = "pre_receive"

    @abstractmethod
    async def check(self, context: HookContext) -> Union[PolicyDecision, bool]:
        pass


class PreCreatePolicy(ABC):
    """Decides whether a missing repository may be created by a push"""

    name = "pre_create"

    @abstractmethod
    async def allow(self, repo_name: str) -> bool:
        pass


class PostReceiveHook(ABC):
    """Runs after git-receive-pack completed; cannot affect the push"""

    name = "post_receive"

    @abstractmethod
    async def execute(self, context: HookContext, archive: bytes) -> None:
        pass


class AllowAllPushes(PreReceivePolicy):
    """Always successful; the default when no pre-receive policy is configured"""

    name = "allow_all"

    async def check(self, context: HookContext) -> PolicyDecision:
        return PolicyDecision.accept()


class MasterOnly(PreReceivePolicy):
    """Only allows pushes to master"""

    name = "master_only"
    BRANCH = "refs/heads/master"

    async def check(self, context: HookContext) -> PolicyDecision:
        if context.branch == self.BRANCH:
            return PolicyDecision.accept()

        context.writeln("Only pushing to master is allowed.")
        return PolicyDecision.reject("only master may be pushed")


class GithubRepoNames(PreReceivePolicy):
    """Enforces repository paths like owner/project.git"""

    name = "github_repo_names"
    REPO_PATTERN = re.compile(r"^\w+/\w+\.git$")

    async def check(self, context: HookContext) -> PolicyDecision:
        if self.REPO_PATTERN.match(context.repository):
            return PolicyDecision.accept()
        return PolicyDecision.reject("repository must be named like owner/project.git")


class PolicyChain(PreReceivePolicy):
    """Runs policies in order and stops at the first rejection"""

    name = "chain"

    def __init__(self, policies: Iterable[PreReceivePolicy]):
        self.policies: List[PreReceivePolicy] = list(policies)

    async def check(self, context: HookContext) -> PolicyDecision:
        for policy in self.policies:
            try:
                decision = PolicyDecision.coerce(await policy.check(context))
            except HookRejected as e:
                decision = PolicyDecision.reject(e.reason)

            if not decision.accepted:
                logger.debug(
                    "policy_chain_rejected",
                    policy=policy.name,
                    reason=decision.reason,
                )
                return decision

        return PolicyDecision.accept()


class AllowCreate(PreCreatePolicy):
    """Always creates a new repository if one does not exist"""

    name = "allow_create"

    async def allow(self, repo_name: str) -> bool:
        return True


class DenyCreate(PreCreatePolicy):
    """Never creates repositories over git push; the default"""

    name = "deny_create"

    async def allow(self, repo_name: str) -> bool:
        return False


class LoggingPostReceive(PostReceiveHook):
    """Logs every completed push"""

    name = "logging"

    async def execute(self, context: HookContext, archive: bytes) -> None:
        logger.info(
            "push_received",
            repository=context.repository,
            branch=context.branch,
            commit=context.commit,
            agent=context.agent,
            archive_size=len(archive),
        )


class WebhookPostReceive(PostReceiveHook):
    """Notifies an external URL about completed pushes"""

    name = "webhook"

    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout

    async def execute(self, context: HookContext, archive: bytes) -> None:
        payload = context.to_dict()
        payload["archive_size"] = len(archive)

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                self.url,
                json=payload,
                headers={"Content-Type": "application/json"},
            )

        if response.status_code >= 400:
            logger.warning(
                "webhook_rejected_notification",
                url=self.url,
                status_code=response.status_code,
            )
        else:
            logger.debug("webhook_notified", url=self.url, status_code=response.status_code)


class PostReceiveChain(PostReceiveHook):
    """Runs several post-receive hooks; a failing hook does not stop the others"""

    name = "chain"

    def __init__(self, hooks: Iterable[PostReceiveHook]):
        self.hooks: List[PostReceiveHook] = list(hooks)

    async def execute(self, context: HookContext, archive: bytes) -> None:
        for hook in self.hooks:
            try:
                await hook.execute(context, archive)
            except Exception as e:
                logger.error("post_receive_hook_error", hook=hook.name, error=str(e))
