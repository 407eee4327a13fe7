"""Tests for request classification"""

from pathlib import Path

import pytest

from gitbridge.core.exceptions import NoMatchingService, NotAGitRequest
from gitbridge.core.git.git_types import GitService
from gitbridge.core.git.request_classifier import (
    RequestClassifier,
    detect_service_type,
    is_empty_body,
    parse_repo_name,
    request_uri,
)


class TestDetectServiceType:
    """Test service detection from the request URI"""

    @pytest.mark.parametrize("uri,expected", [
        ("/adam/project.git/info/refs?service=git-receive-pack", GitService.RECEIVE_PACK),
        ("/adam/project.git/info/refs?service=git-upload-pack", GitService.UPLOAD_PACK),
        ("/adam/project.git/git-receive-pack", GitService.RECEIVE_PACK),
        ("/adam/project.git/git-upload-pack", GitService.UPLOAD_PACK),
        ("git-upload-pack/git-receive-pack", GitService.RECEIVE_PACK),
    ])
    def test_detects_service(self, uri: str, expected: GitService):
        assert detect_service_type(uri) == expected

    @pytest.mark.parametrize("uri", [
        "adam/test/git",
        "/adam/project.git",
        "/adam/project.git/info/refs",
        "/adam/project.git/info/refs?service=git-archive",
        "/adam/project.git/git-receive-pack/extra",
    ])
    def test_no_matching_service(self, uri: str):
        with pytest.raises(NoMatchingService) as exc_info:
            detect_service_type(uri)

        assert exc_info.value.status_code == 500


class TestParseRepoName:
    """Test repository name extraction"""

    @pytest.mark.parametrize("uri,expected", [
        ("/adam/project.git/info/refs?service=git-receive-pack", "adam/project.git"),
        ("/adam/dude/project.git/info/refs?service=git-receive-pack", "adam/dude/project.git"),
        ("/adam/gittp/info/refs?service=git-upload-pack", "adam/gittp"),
        ("/adam/dude/project/git-receive-pack", "adam/dude/project"),
        ("/project.git/git-upload-pack", "project.git"),
    ])
    def test_extracts_name(self, uri: str, expected: str):
        assert parse_repo_name(uri) == expected

    def test_missing_service_suffix(self):
        with pytest.raises(NotAGitRequest):
            parse_repo_name("/adam/project.git")

    def test_empty_name(self):
        with pytest.raises(NotAGitRequest):
            parse_repo_name("/git-receive-pack")

    @pytest.mark.parametrize("uri", [
        "/../etc/git-receive-pack",
        "/adam/../../secret.git/info/refs?service=git-upload-pack",
        "/adam/pro\x00ject.git/git-upload-pack",
    ])
    def test_rejects_escaping_names(self, uri: str):
        with pytest.raises(NotAGitRequest):
            parse_repo_name(uri)

    def test_dots_inside_segment_are_allowed(self):
        assert parse_repo_name("/adam/my..project.git/git-upload-pack") == "adam/my..project.git"


class TestRequestClassifier:
    """Test full request classification"""

    @pytest.fixture
    def classifier(self, tmp_path: Path) -> RequestClassifier:
        return RequestClassifier(tmp_path)

    def test_request_uri(self):
        assert request_uri("/a/b.git/info/refs", "service=git-upload-pack") == (
            "/a/b.git/info/refs?service=git-upload-pack"
        )
        assert request_uri("/a/b.git/git-upload-pack", None) == "/a/b.git/git-upload-pack"

    def test_get_refs_discovery(self, classifier: RequestClassifier, tmp_path: Path):
        request = classifier.classify("GET", "/adam/project.git/info/refs", "service=git-upload-pack")

        assert request.service == GitService.UPLOAD_PACK
        assert request.is_advertisement
        assert request.is_get_refs_discovery
        assert request.repo_name == "adam/project.git"
        assert request.full_repo_path == tmp_path / "adam" / "project.git"
        assert request.content_type == "application/x-git-upload-pack-advertisement"
        assert not request.should_run_hooks

    def test_push_with_body_runs_hooks(self, classifier: RequestClassifier):
        request = classifier.classify(
            "POST", "/adam/project.git/git-receive-pack", body=b"0094...."
        )

        assert request.is_receive_pack
        assert not request.is_advertisement
        assert not request.is_get_refs_discovery
        assert request.content_type == "application/x-git-receive-pack-result"
        assert request.should_run_hooks

    @pytest.mark.parametrize("body", [b"", b"0000", None])
    def test_empty_push_skips_hooks(self, classifier: RequestClassifier, body):
        request = classifier.classify("POST", "/adam/project.git/git-receive-pack", body=body)

        assert request.has_empty_body
        assert not request.should_run_hooks

    def test_receive_pack_advertisement_skips_hooks(self, classifier: RequestClassifier):
        request = classifier.classify(
            "GET", "/adam/project.git/info/refs", "service=git-receive-pack", body=b"0000"
        )
        assert not request.should_run_hooks

    def test_upload_pack_never_runs_hooks(self, classifier: RequestClassifier):
        request = classifier.classify("POST", "/adam/project.git/git-upload-pack", body=b"0032want")
        assert not request.should_run_hooks

    def test_get_on_rpc_path_is_advertisement_without_discovery(self, classifier: RequestClassifier):
        request = classifier.classify("GET", "/adam/project.git/git-upload-pack")

        assert request.is_advertisement
        assert not request.is_get_refs_discovery

    def test_is_empty_body(self):
        assert is_empty_body(b"")
        assert is_empty_body(b"0000")
        assert not is_empty_body(b"00000")
