"""Hook and storage configuration of a running bridge"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from gitbridge.core.config import Settings
from gitbridge.core.exceptions import RepositoryInitFailure
from gitbridge.infrastructure.hooks import (
    AllowAllPushes,
    AllowCreate,
    DenyCreate,
    GithubRepoNames,
    LoggingPostReceive,
    MasterOnly,
    PolicyChain,
    PostReceiveChain,
    PostReceiveHook,
    PreCreatePolicy,
    PreReceivePolicy,
    WebhookPostReceive,
)


@dataclass
class ServerConfig:
    """
    Built once at startup and treated as read-only afterwards.

    Defaults: every push accepted, repositories never created over push,
    no post-receive hook.
    """
    storage_root: Path
    debug: bool = False
    pre_receive: PreReceivePolicy = field(default_factory=AllowAllPushes)
    post_receive: Optional[PostReceiveHook] = None
    pre_create: PreCreatePolicy = field(default_factory=DenyCreate)

    def __post_init__(self):
        self.storage_root = Path(self.storage_root).expanduser().resolve()
        try:
            self.storage_root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise RepositoryInitFailure(
                "Could not create repository path",
                details={"path": str(self.storage_root), "error": str(e)},
            )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServerConfig":
        policies: List[PreReceivePolicy] = []
        if settings.github_repo_names:
            policies.append(GithubRepoNames())
        if settings.master_only:
            policies.append(MasterOnly())

        if not policies:
            pre_receive: PreReceivePolicy = AllowAllPushes()
        elif len(policies) == 1:
            pre_receive = policies[0]
        else:
            pre_receive = PolicyChain(policies)

        post_receive: Optional[PostReceiveHook] = None
        if settings.post_receive_webhook_url:
            post_receive = PostReceiveChain([
                LoggingPostReceive(),
                WebhookPostReceive(settings.post_receive_webhook_url, timeout=settings.hook_timeout),
            ])

        return cls(
            storage_root=settings.storage_root,
            debug=settings.debug,
            pre_receive=pre_receive,
            post_receive=post_receive,
            pre_create=AllowCreate() if settings.auto_create else DenyCreate(),
        )
