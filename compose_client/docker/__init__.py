"""
docker compose 客户端模块

通过子进程调用 docker compose，并通过 Docker Engine API 查询项目资源。
"""

from .client import ComposeClient, ComposeCommand, CompletedCommand, ExecutionMode, PortBinding, sanitize_name
from .errors import (
    ComposeClientError,
    ToolNotFoundError,
    ProjectNotFoundError,
    EngineUnavailableError,
    LaunchError,
    CommandFailedError,
    StreamCloseError,
    ListingError,
    TrackerTimeoutError,
)
from .pipes import Pipes
from .tracker import ProcessTracker, FailedInvocation

__all__ = [
    "ComposeClient",
    "ComposeCommand",
    "CompletedCommand",
    "ExecutionMode",
    "PortBinding",
    "sanitize_name",
    "Pipes",
    "ProcessTracker",
    "FailedInvocation",
    "ComposeClientError",
    "ToolNotFoundError",
    "ProjectNotFoundError",
    "EngineUnavailableError",
    "LaunchError",
    "CommandFailedError",
    "StreamCloseError",
    "ListingError",
    "TrackerTimeoutError",
]
