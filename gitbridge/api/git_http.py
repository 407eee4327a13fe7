"""FastAPI route for the git smart HTTP protocol"""

import asyncio
import zlib
from typing import AsyncIterator, Dict, Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import StreamingResponse
from starlette.requests import ClientDisconnect

from gitbridge.core.config import Settings, settings as default_settings
from gitbridge.core.exceptions import (
    BaseAPIException,
    PayloadTooLarge,
    RequestBodyReadFailure,
)
from gitbridge.core.git.command_executor import GitCommandExecutor
from gitbridge.core.git.git_types import ServiceRequest
from gitbridge.core.git.request_classifier import RequestClassifier
from gitbridge.core.server_config import ServerConfig
from gitbridge.infrastructure.git_metrics import git_requests_total
from gitbridge.infrastructure.git_protocol import GitHeaders, PktLine
from gitbridge.infrastructure.git_subprocess import GitServiceProcess
from gitbridge.infrastructure.hook_pipeline import HookPipeline, ensure_repository
from gitbridge.infrastructure.logging import get_logger
from gitbridge.infrastructure.middleware.correlation import get_correlation_id
from gitbridge.infrastructure.repository import RepositoryLifecycle
from gitbridge.infrastructure.sinks import BufferedSink, PacketSink, StreamingSink

logger = get_logger(__name__)

router = APIRouter(tags=["git"])


class GitHTTPBridge:
    """
    Serves smart HTTP requests against a storage root.

    Request body in, git process out: the body is handed to the git service
    verbatim and its output (preceded by any hook progress) becomes the
    response body.
    """

    def __init__(
        self,
        config: ServerConfig,
        settings: Optional[Settings] = None,
        lifecycle: Optional[RepositoryLifecycle] = None,
        process: Optional[GitServiceProcess] = None,
    ):
        self.config = config
        self.settings = settings or default_settings
        self.classifier = RequestClassifier(config.storage_root)
        self.lifecycle = lifecycle or RepositoryLifecycle(
            GitCommandExecutor(
                git_binary=self.settings.git_binary_path,
                timeout=self.settings.git_command_timeout,
            )
        )
        self.process = process or GitServiceProcess(
            git_binary=self.settings.git_binary_path,
            timeout=self.settings.git_command_timeout,
        )

    async def read_body(self, request: Request) -> bytes:
        """
        Read the whole request body, inflating gzip transfers.

        Raises:
            RequestBodyReadFailure: transport error or corrupt gzip data
            PayloadTooLarge: body above max_upload_size_mb
        """
        limit = self.settings.max_upload_size_bytes
        body = bytearray()

        try:
            async for chunk in request.stream():
                body += chunk
                if len(body) > limit:
                    raise PayloadTooLarge(limit)
        except (ClientDisconnect, OSError) as e:
            raise RequestBodyReadFailure(details={"error": str(e)})

        if not GitHeaders.is_gzip_encoded(request.headers):
            return bytes(body)

        decompressor = zlib.decompressobj(16 + zlib.MAX_WBITS)
        try:
            data = decompressor.decompress(bytes(body), limit + 1)
        except zlib.error as e:
            raise RequestBodyReadFailure(
                "couldn't decompress request body", details={"error": str(e)}
            )

        if len(data) > limit:
            raise PayloadTooLarge(limit)
        return data

    async def serve(
        self,
        service_request: ServiceRequest,
        body: bytes,
        sink: PacketSink,
        authorization: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> None:
        """Run one classified request, writing everything for the client to sink"""
        if service_request.should_run_hooks:
            pipeline = HookPipeline(
                self.config,
                self.lifecycle,
                self.process,
                hook_timeout=self.settings.hook_timeout,
            )
            await pipeline.run(
                service_request,
                body,
                sink,
                authorization=authorization,
                correlation_id=correlation_id,
            )
            return

        await ensure_repository(
            service_request,
            self.lifecycle,
            self.config.pre_create,
            self.settings.hook_timeout,
        )

        if service_request.is_get_refs_discovery:
            sink.write(PktLine.encode_ref_advertisement(service_request.service))

        await self.process.run(service_request, body, sink)

    async def handle(self, request: Request) -> Response:
        body = await self.read_body(request)

        service_request = self.classifier.classify(
            request.method,
            request.url.path,
            request.url.query or None,
            body,
        )

        logger.info(
            "git_request_classified",
            service=service_request.service.value,
            repository=service_request.repo_name,
            advertisement=service_request.is_advertisement,
            run_hooks=service_request.should_run_hooks,
        )

        headers = GitHeaders.for_response(service_request.content_type)
        serve_args = dict(
            service_request=service_request,
            body=body,
            authorization=request.headers.get("authorization"),
            correlation_id=get_correlation_id(),
        )

        if self.settings.stream_progress:
            return await self._respond_streaming(service_request, headers, serve_args)
        return await self._respond_buffered(service_request, headers, serve_args)

    async def _respond_buffered(
        self, service_request: ServiceRequest, headers: Dict[str, str], serve_args
    ) -> Response:
        sink = BufferedSink()
        try:
            await self.serve(sink=sink, **serve_args)
        except BaseAPIException as e:
            return self._error_with_output(service_request, headers, sink.getvalue(), e)

        self._count(service_request, 200)
        return Response(content=sink.getvalue(), status_code=200, headers=headers)

    async def _respond_streaming(
        self, service_request: ServiceRequest, headers: Dict[str, str], serve_args
    ) -> Response:
        sink = StreamingSink()

        async def produce():
            try:
                await self.serve(sink=sink, **serve_args)
            finally:
                sink.finish()

        task = asyncio.create_task(produce())
        started = asyncio.create_task(sink.wait_started())

        try:
            await asyncio.wait({task, started}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if not started.done():
                started.cancel()

        if task.done():
            # Finished before anything needed streaming: status still open
            output = sink.drain()
            error = task.exception()
            if isinstance(error, BaseAPIException):
                return self._error_with_output(service_request, headers, output, error)
            if error is not None:
                raise error

            self._count(service_request, 200)
            return Response(content=output, status_code=200, headers=headers)

        self._count(service_request, 200)
        return StreamingResponse(
            self._stream(sink, task, service_request),
            status_code=200,
            headers=headers,
        )

    async def _stream(
        self, sink: StreamingSink, task: "asyncio.Task", service_request: ServiceRequest
    ) -> AsyncIterator[bytes]:
        try:
            async for chunk in sink.chunks():
                yield chunk

            try:
                await task
            except BaseAPIException as e:
                # Headers are gone; the client already got the fatal frame
                logger.error(
                    "git_stream_failed",
                    repository=service_request.repo_name,
                    code=e.code,
                    message=e.message,
                )
        finally:
            if not task.done():
                logger.warning("git_stream_aborted", repository=service_request.repo_name)
                task.cancel()

    def _error_with_output(
        self,
        service_request: ServiceRequest,
        headers: Dict[str, str],
        output: bytes,
        error: BaseAPIException,
    ) -> Response:
        self._count(service_request, error.status_code)
        if not output:
            raise error

        logger.warning(
            "git_request_failed_with_output",
            repository=service_request.repo_name,
            code=error.code,
            status_code=error.status_code,
        )
        return Response(content=output, status_code=error.status_code, headers=headers)

    @staticmethod
    def _count(service_request: ServiceRequest, status_code: int) -> None:
        git_requests_total.labels(
            service=service_request.service.value,
            phase="advertisement" if service_request.is_advertisement else "rpc",
            status=str(status_code),
        ).inc()


def get_git_bridge(request: Request) -> GitHTTPBridge:
    return request.app.state.git_bridge


@router.api_route("/{full_path:path}", methods=["GET", "POST"])
async def git_smart_http(
    full_path: str,
    request: Request,
    bridge: GitHTTPBridge = Depends(get_git_bridge),
):
    """Handle ref discovery and git-upload-pack / git-receive-pack calls"""
    return await bridge.handle(request)
