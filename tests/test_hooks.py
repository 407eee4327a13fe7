"""Tests for hook context and built-in policies"""

import io
from unittest.mock import AsyncMock, Mock, patch

import pytest

from gitbridge.core.exceptions import HookRejected
from gitbridge.infrastructure.git_protocol import PktLine, PktLineReader
from gitbridge.infrastructure.hooks import (
    AllowAllPushes,
    AllowCreate,
    DenyCreate,
    GithubRepoNames,
    LoggingPostReceive,
    MasterOnly,
    PolicyChain,
    PolicyDecision,
    PostReceiveChain,
    PostReceiveHook,
    PreReceivePolicy,
    WebhookPostReceive,
)
from gitbridge.infrastructure.sinks import StreamingSink


class RecordingPolicy(PreReceivePolicy):
    def __init__(self, result):
        self.result = result
        self.calls = 0

    async def check(self, context):
        self.calls += 1
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class TestPolicyDecision:
    def test_coerce(self):
        assert PolicyDecision.coerce(True).accepted
        assert not PolicyDecision.coerce(False).accepted
        assert not PolicyDecision.coerce(None).accepted

        decision = PolicyDecision.reject("nope")
        assert PolicyDecision.coerce(decision) is decision


class TestHookContext:
    """Test progress output through the hook context"""

    def test_write_is_sideband_progress(self, make_context, sink):
        context = make_context()

        written = context.write("Hello world")

        assert written == 11
        assert sink.getvalue() == b"0010\x02Hello world"

    def test_writef_and_writeln(self, make_context, sink):
        context = make_context()

        context.writef("pushed %s to %s\n", "abc", "master")
        context.writeln("done")

        assert PktLine.decode_lines(sink.getvalue() + b"0000") == [
            b"\x02pushed abc to master\n",
            b"\x02done\n",
            None,
        ]

    def test_writef_without_params_keeps_percent(self, make_context, sink):
        make_context().writef("100% done")
        assert sink.getvalue().endswith(b"100% done")

    def test_large_write_is_split(self, make_context, sink):
        context = make_context()
        data = b"x" * (PktLine.MAX_SIDEBAND_DATA_LEN + 10)

        context.write(data)

        reader = PktLineReader(io.BytesIO(sink.getvalue()))
        first, second = reader.read_line(), reader.read_line()
        assert len(first) == PktLine.MAX_PKT_DATA_LEN
        assert second == b"\x02" + b"x" * 10
        assert reader.at_eof()

    def test_fatal(self, make_context, sink):
        make_context().fatal("repository is read-only")
        assert sink.getvalue() == PktLine.encode(b"\x03error: repository is read-only\n")

    def test_close_is_idempotent(self, make_context, sink):
        context = make_context()
        context.write("bye")

        context.close()
        context.close()

        assert context.closed
        assert sink.getvalue().endswith(b"bye0000")
        assert sink.getvalue().count(b"0000") == 1

    def test_detached_context_writes_nothing(self, make_context, sink):
        context = make_context()
        context.write("before")
        written = sink.getvalue()

        context.detach()
        context.writeln("deployed")
        context.fatal("too late")
        context.close()

        assert context.closed
        assert sink.getvalue() == written

    def test_write_after_close(self, make_context):
        context = make_context()
        context.close()

        with pytest.raises(RuntimeError):
            context.write("late")

    @pytest.mark.asyncio
    async def test_streaming_sink_is_flushed_per_write(self):
        from gitbridge.infrastructure.hooks import HookContext

        sink = StreamingSink()
        context = HookContext(sink, "adam/project.git", "refs/heads/master", "abc", True)

        context.write("progress")

        assert sink.started
        assert sink.getvalue() == b""

    def test_to_dict_omits_authorization(self, make_context):
        data = make_context(authorization="Basic c2VjcmV0").to_dict()

        assert data["repository"] == "adam/project.git"
        assert data["branch"] == "refs/heads/master"
        assert data["capabilities"] == ["report-status", "side-band-64k"]
        assert "authorization" not in data


class TestBuiltinPolicies:
    """Test the shipped pre-receive and pre-create policies"""

    @pytest.mark.asyncio
    async def test_allow_all(self, make_context):
        assert (await AllowAllPushes().check(make_context())).accepted

    @pytest.mark.asyncio
    async def test_master_only_accepts_master(self, make_context, sink):
        decision = await MasterOnly().check(make_context(branch="refs/heads/master"))

        assert decision.accepted
        assert sink.getvalue() == b""

    @pytest.mark.asyncio
    async def test_master_only_rejects_other_branches(self, make_context, sink):
        decision = await MasterOnly().check(make_context(branch="refs/heads/feature"))

        assert not decision.accepted
        assert b"Only pushing to master is allowed.\n" in sink.getvalue()

    @pytest.mark.asyncio
    async def test_master_only_wants_full_ref_name(self, make_context):
        decision = await MasterOnly().check(make_context(branch="master"))
        assert not decision.accepted

    @pytest.mark.asyncio
    @pytest.mark.parametrize("repository,accepted", [
        ("adam/project.git", True),
        ("adam/project", False),
        ("adam/dude/project.git", False),
        ("adam/pro-ject.git", False),
    ])
    async def test_github_repo_names(self, make_context, repository, accepted):
        decision = await GithubRepoNames().check(make_context(repository=repository))
        assert decision.accepted is accepted

    @pytest.mark.asyncio
    async def test_create_policies(self):
        assert await AllowCreate().allow("adam/project.git") is True
        assert await DenyCreate().allow("adam/project.git") is False


class TestPolicyChain:
    """Test combining policies"""

    @pytest.mark.asyncio
    async def test_all_accept(self, make_context):
        first, second = RecordingPolicy(True), RecordingPolicy(PolicyDecision.accept())

        decision = await PolicyChain([first, second]).check(make_context())

        assert decision.accepted
        assert (first.calls, second.calls) == (1, 1)

    @pytest.mark.asyncio
    async def test_stops_at_first_rejection(self, make_context):
        first = RecordingPolicy(PolicyDecision.reject("first says no"))
        second = RecordingPolicy(True)

        decision = await PolicyChain([first, second]).check(make_context())

        assert not decision.accepted
        assert decision.reason == "first says no"
        assert second.calls == 0

    @pytest.mark.asyncio
    async def test_hook_rejected_becomes_decision(self, make_context):
        chain = PolicyChain([RecordingPolicy(HookRejected("frozen"))])

        decision = await chain.check(make_context())

        assert not decision.accepted
        assert decision.reason == "frozen"

    @pytest.mark.asyncio
    async def test_bool_false_rejects(self, make_context):
        decision = await PolicyChain([RecordingPolicy(False)]).check(make_context())
        assert not decision.accepted


class TestPostReceiveHooks:
    """Test post-receive hooks"""

    @pytest.mark.asyncio
    async def test_logging_post_receive(self, make_context):
        with patch("gitbridge.infrastructure.hooks.logger") as mock_logger:
            await LoggingPostReceive().execute(make_context(), b"tar")

        mock_logger.info.assert_called_once()
        assert mock_logger.info.call_args.kwargs["archive_size"] == 3

    @pytest.mark.asyncio
    async def test_webhook_posts_context(self, make_context):
        hook = WebhookPostReceive("https://example.com/push", timeout=5.0)

        mock_response = Mock(status_code=200)
        mock_client = AsyncMock()
        mock_client.post.return_value = mock_response

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client_class.return_value.__aenter__.return_value = mock_client
            await hook.execute(make_context(), b"archive")

        mock_client_class.assert_called_once_with(timeout=5.0)
        url = mock_client.post.call_args.args[0]
        payload = mock_client.post.call_args.kwargs["json"]
        assert url == "https://example.com/push"
        assert payload["branch"] == "refs/heads/master"
        assert payload["archive_size"] == 7

    @pytest.mark.asyncio
    async def test_chain_isolates_failures(self, make_context):
        failing = Mock(spec=PostReceiveHook)
        failing.name = "failing"
        failing.execute = AsyncMock(side_effect=RuntimeError("webhook down"))
        working = Mock(spec=PostReceiveHook)
        working.name = "working"
        working.execute = AsyncMock()

        context = make_context()
        await PostReceiveChain([failing, working]).execute(context, b"")

        working.execute.assert_awaited_once_with(context, b"")
