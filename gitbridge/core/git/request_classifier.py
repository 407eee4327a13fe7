"""Maps a smart HTTP request onto a git service and repository"""
import re
from pathlib import Path
from typing import Optional

from gitbridge.core.exceptions import NoMatchingService, NotAGitRequest
from gitbridge.infrastructure.git_protocol import PktLine

from .git_types import GitService, ServiceRequest

SERVICE_PATTERN = re.compile(r"(?:/info/refs\?service=|/)(git-(?:receive|upload)-pack)$")
REPO_NAME_PATTERN = re.compile(r"^(.*?)(?:/info/refs\?service=|/)git-(?:receive|upload)-pack$")
REFS_DISCOVERY_MARKER = "/info/refs?service="


def request_uri(path: str, query: Optional[str] = None) -> str:
    return f"{path}?{query}" if query else path


def detect_service_type(uri: str) -> GitService:
    match = SERVICE_PATTERN.search(uri)
    if not match:
        raise NoMatchingService(uri)
    return GitService(match.group(1))


def parse_repo_name(uri: str) -> str:
    """
    Extract the repository name from a request URI.

    "/adam/project.git/info/refs?service=git-receive-pack" -> "adam/project.git"
    """
    match = REPO_NAME_PATTERN.match(uri)
    if not match:
        raise NotAGitRequest(uri=uri)

    repo_name = match.group(1).lstrip("/")
    if not repo_name:
        raise NotAGitRequest("Request does not name a repository", uri=uri)

    if "\x00" in repo_name or ".." in repo_name.split("/"):
        raise NotAGitRequest("Invalid repository path", uri=uri)

    return repo_name


def is_empty_body(body: bytes) -> bool:
    return not body or body == PktLine.FLUSH_PKT


class RequestClassifier:
    """Classifies requests relative to a repository storage root"""

    def __init__(self, storage_root: Path):
        self.storage_root = Path(storage_root)

    def classify(
        self,
        method: str,
        path: str,
        query: Optional[str] = None,
        body: Optional[bytes] = None,
    ) -> ServiceRequest:
        uri = request_uri(path, query)

        service = detect_service_type(uri)
        repo_name = parse_repo_name(uri)

        is_advertisement = method.upper() == "GET"

        return ServiceRequest(
            service=service,
            is_advertisement=is_advertisement,
            is_get_refs_discovery=is_advertisement and REFS_DISCOVERY_MARKER in uri,
            repo_name=repo_name,
            full_repo_path=self.storage_root / repo_name,
            has_empty_body=is_empty_body(body or b""),
        )
