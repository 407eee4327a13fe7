"""Per-push hook orchestration around git-receive-pack"""

import asyncio
from enum import Enum
from typing import List, Optional

from gitbridge.core.exceptions import (
    BaseAPIException,
    HookRejected,
    RepositoryCreationDenied,
    RepositoryNotFound,
)
from gitbridge.core.git.git_types import ServiceRequest
from gitbridge.core.git.negotiation import parse_receive_pack_negotiation
from gitbridge.core.server_config import ServerConfig
from gitbridge.infrastructure.git_metrics import hook_decisions_total, repositories_created_total
from gitbridge.infrastructure.git_subprocess import GitServiceProcess
from gitbridge.infrastructure.hooks import (
    HookContext,
    HookEvent,
    PolicyDecision,
    PreCreatePolicy,
)
from gitbridge.infrastructure.logging import get_logger
from gitbridge.infrastructure.repository import RepositoryLifecycle
from gitbridge.infrastructure.sinks import CountingSink, PacketSink

logger = get_logger(__name__)


class PipelineState(str, Enum):
    START = "start"
    PRE_RECEIVE = "pre_receive"
    REJECTED = "rejected"
    ACCEPTED = "accepted"
    REPO_CREATE_CHECK = "repo_create_check"
    COMMAND_EXECUTED = "command_executed"
    POST_RECEIVE = "post_receive"
    CLOSED = "closed"


async def ensure_repository(
    request: ServiceRequest,
    lifecycle: RepositoryLifecycle,
    pre_create: PreCreatePolicy,
    hook_timeout: float,
) -> bool:
    """
    Make sure the repository a request targets exists.

    Returns whether it existed before. A missing repository is created for
    receive-pack requests the pre-create policy approves.

    Raises:
        RepositoryNotFound: upload-pack on a missing repository
        RepositoryCreationDenied: pre-create policy declined
        RepositoryInitFailure: git init failed
    """
    path = request.full_repo_path
    if lifecycle.exists(path):
        return True

    if not request.is_receive_pack:
        raise RepositoryNotFound(request.repo_name)

    try:
        allowed = await asyncio.wait_for(
            pre_create.allow(request.repo_name), timeout=hook_timeout
        )
    except asyncio.TimeoutError:
        logger.warning("pre_create_timeout", repository=request.repo_name, timeout=hook_timeout)
        allowed = False
    except Exception as e:
        logger.error("pre_create_error", repository=request.repo_name, hook=pre_create.name, error=str(e))
        allowed = False

    hook_decisions_total.labels(
        event=HookEvent.PRE_CREATE.value,
        outcome="accepted" if allowed else "rejected",
    ).inc()

    if not allowed:
        logger.info("repository_creation_denied", repository=request.repo_name)
        raise RepositoryCreationDenied(request.repo_name)

    await lifecycle.init_bare(path)
    repositories_created_total.inc()
    return False


class HookPipeline:
    """
    State machine for one push.

    START -> PRE_RECEIVE -> REJECTED | ACCEPTED -> REPO_CREATE_CHECK
    -> COMMAND_EXECUTED -> POST_RECEIVE -> CLOSED

    A rejected push never reaches the git process; the client receives an
    ``ng`` status report instead. Until git writes its response the hook
    stream is terminated with a flush packet on every exit path. Once git
    has written, its own flush ends the response and the context is
    detached, so post-receive output and late errors only reach the log.
    """

    def __init__(
        self,
        config: ServerConfig,
        lifecycle: RepositoryLifecycle,
        process: GitServiceProcess,
        hook_timeout: float = 30.0,
    ):
        self.config = config
        self.lifecycle = lifecycle
        self.process = process
        self.hook_timeout = hook_timeout
        self.transitions: List[PipelineState] = []
        self.context: Optional[HookContext] = None

    @property
    def state(self) -> Optional[PipelineState]:
        return self.transitions[-1] if self.transitions else None

    def _enter(self, state: PipelineState) -> None:
        self.transitions.append(state)
        logger.debug("hook_pipeline_state", state=state.value)

    async def run(
        self,
        request: ServiceRequest,
        body: bytes,
        sink: PacketSink,
        authorization: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> PipelineState:
        """
        Drive a push through the hooks and git-receive-pack.

        Returns the state the push ended in before closing (REJECTED or
        POST_RECEIVE/COMMAND_EXECUTED).

        Raises:
            MalformedNegotiation: unreadable first command line
            RepositoryCreationDenied, RepositoryInitFailure,
            CommandExecutionFailure: after a fatal message reached the sink,
                unless git already wrote part of the response
        """
        self._enter(PipelineState.START)

        negotiation = parse_receive_pack_negotiation(body)
        repo_exists = self.lifecycle.exists(request.full_repo_path)

        if negotiation.is_empty:
            # Nothing to hook on; behave like a plain receive-pack call
            logger.debug("hook_pipeline_empty_negotiation", repository=request.repo_name)
        else:
            self.context = HookContext(
                sink,
                repository=request.repo_name,
                branch=negotiation.branch,
                commit=negotiation.new_ref,
                repo_exists=repo_exists,
                old_ref=negotiation.old_ref,
                agent=negotiation.agent,
                capabilities=negotiation.capabilities,
                authorization=authorization,
                correlation_id=correlation_id,
            )

        outcome = None
        try:
            if self.context is not None:
                decision = await self._pre_receive(self.context)
                if not decision.accepted:
                    self._enter(PipelineState.REJECTED)
                    self._report_rejection(self.context, decision.reason)
                    outcome = PipelineState.REJECTED
                    return outcome
                self._enter(PipelineState.ACCEPTED)

            self._enter(PipelineState.REPO_CREATE_CHECK)
            await ensure_repository(
                request, self.lifecycle, self.config.pre_create, self.hook_timeout
            )

            git_sink = CountingSink(sink)
            try:
                await self.process.run(request, body, git_sink)
            finally:
                if self.context is not None and git_sink.bytes_written:
                    self.context.detach()
            self._enter(PipelineState.COMMAND_EXECUTED)
            outcome = PipelineState.COMMAND_EXECUTED

            if self.context is not None and self.config.post_receive is not None:
                self._enter(PipelineState.POST_RECEIVE)
                await self._post_receive(request, self.context)
                outcome = PipelineState.POST_RECEIVE

            return outcome
        except BaseAPIException as e:
            if self.context is not None and not self.context.closed:
                self.context.fatal(e.message)
            raise
        finally:
            if self.context is not None:
                self.context.close()
            self._enter(PipelineState.CLOSED)
            logger.info(
                "hook_pipeline_finished",
                repository=request.repo_name,
                branch=negotiation.branch,
                outcome=outcome.value if outcome else "error",
            )

    async def _pre_receive(self, context: HookContext) -> PolicyDecision:
        self._enter(PipelineState.PRE_RECEIVE)
        policy = self.config.pre_receive

        try:
            decision = PolicyDecision.coerce(
                await asyncio.wait_for(policy.check(context), timeout=self.hook_timeout)
            )
        except HookRejected as e:
            decision = PolicyDecision.reject(e.reason)
        except asyncio.TimeoutError:
            logger.warning("pre_receive_timeout", hook=policy.name, timeout=self.hook_timeout)
            decision = PolicyDecision.reject("pre-receive hook timed out")
        except Exception as e:
            logger.error("pre_receive_error", hook=policy.name, error=str(e))
            decision = PolicyDecision.reject("pre-receive hook failed")

        hook_decisions_total.labels(
            event=HookEvent.PRE_RECEIVE.value,
            outcome="accepted" if decision.accepted else "rejected",
        ).inc()

        logger.info(
            "pre_receive_decision",
            hook=policy.name,
            repository=context.repository,
            branch=context.branch,
            accepted=decision.accepted,
            reason=decision.reason,
        )
        return decision

    @staticmethod
    def _report_rejection(context: HookContext, reason: Optional[str]) -> None:
        context.write("unpack ok\n")
        context.write(f"ng {context.branch} {reason or 'pre-receive hook declined'}\n")

    async def _post_receive(self, request: ServiceRequest, context: HookContext) -> None:
        hook = self.config.post_receive
        archive = await self.lifecycle.archive(request.full_repo_path, context.commit)

        try:
            await asyncio.wait_for(hook.execute(context, archive), timeout=self.hook_timeout)
            outcome = "success"
        except asyncio.TimeoutError:
            logger.warning("post_receive_timeout", hook=hook.name, timeout=self.hook_timeout)
            outcome = "timeout"
        except Exception as e:
            logger.error("post_receive_error", hook=hook.name, error=str(e))
            outcome = "error"

        hook_decisions_total.labels(event=HookEvent.POST_RECEIVE.value, outcome=outcome).inc()
