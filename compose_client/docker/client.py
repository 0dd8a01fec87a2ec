"""
docker compose 客户端

所有变更类操作通过子进程调用 `docker compose` 完成，只读查询通过
Docker Engine API 按 compose 项目标签过滤。
"""

import logging
import re
import shutil
import subprocess
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import docker
from docker.errors import DockerException
from docker.models.containers import Container
from requests.exceptions import RequestException

from ..config import Settings, get_settings
from .errors import (
    CommandFailedError,
    EngineUnavailableError,
    LaunchError,
    ListingError,
    ProjectNotFoundError,
    StreamCloseError,
    ToolNotFoundError,
)
from .pipes import Pipes
from .tracker import FailedInvocation, ProcessTracker


# 配置日志
logger = logging.getLogger(__name__)

PROJECT_LABEL = "com.docker.compose.project"
SERVICE_LABEL = "com.docker.compose.service"

_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_-]+")


def sanitize_name(value: str) -> str:
    """去掉 compose 名称中不允许的字符"""
    return _INVALID_NAME_CHARS.sub("", value)


class ExecutionMode(Enum):
    """命令执行模式"""
    PIPE = "pipe"  # 立即返回管道包，后台等待退出
    DIRECT = "direct"  # 阻塞到进程退出


class ComposeCommand(Enum):
    """支持的 compose 子命令"""
    UP = "up"
    DOWN = "down"
    BUILD = "build"
    CONVERT = "convert"
    CP = "cp"
    CREATE = "create"
    EVENTS = "events"
    EXEC = "exec"
    KILL = "kill"
    LOGS = "logs"
    PAUSE = "pause"
    UNPAUSE = "unpause"
    PULL = "pull"
    PUSH = "push"
    RESTART = "restart"
    RM = "rm"
    RUN = "run"
    START = "start"
    STOP = "stop"
    TOP = "top"


@dataclass
class CompletedCommand:
    """直接模式下成功完成的命令"""
    args: List[str]
    returncode: int = 0


@dataclass
class PortBinding:
    """容器端口到宿主机的映射"""
    service: str
    container_id: str
    private_port: int
    protocol: str
    host_ip: Optional[str] = None
    host_port: Optional[int] = None


CommandResult = Union[Pipes, CompletedCommand]


class ComposeClient:
    """docker compose 客户端"""

    def __init__(self,
                 project_path: Union[str, Path],
                 settings: Optional[Settings] = None,
                 docker_client: Optional[docker.DockerClient] = None,
                 cancel_event: Optional[threading.Event] = None):
        self.settings = settings or get_settings()
        self.project_path = Path(project_path).resolve()
        self.bin = self._resolve_binary(self.settings.docker_binary)
        self._check_compose_file()
        self.project_name = sanitize_name(self.project_path.name)
        self.mode = ExecutionMode.PIPE if self.settings.pipe_mode else ExecutionMode.DIRECT
        self._owns_client = docker_client is None
        self._client = docker_client or self._connect_engine()
        self._tracker = ProcessTracker()
        self._cancel_event = cancel_event

    @property
    def client(self) -> docker.DockerClient:
        """Docker Engine 客户端"""
        return self._client

    @property
    def pipe_mode(self) -> bool:
        return self.mode is ExecutionMode.PIPE

    @pipe_mode.setter
    def pipe_mode(self, enabled: bool) -> None:
        self.mode = ExecutionMode.PIPE if enabled else ExecutionMode.DIRECT

    @staticmethod
    def _resolve_binary(binary: str) -> str:
        resolved = shutil.which(binary)
        if resolved is None:
            raise ToolNotFoundError(f"未找到 {binary} 可执行文件")
        return resolved

    def _check_compose_file(self) -> None:
        compose_file = self.project_path / self.settings.compose_file_name
        try:
            with open(compose_file, "rb"):
                pass
        except OSError as e:
            raise ProjectNotFoundError(f"无法打开 compose 文件: {compose_file}") from e

    def _connect_engine(self) -> docker.DockerClient:
        try:
            client = docker.from_env()
            if self.settings.ping_engine:
                client.ping()
            logger.info("Docker客户端连接成功")
            return client
        except (DockerException, RequestException) as e:
            logger.error(f"Docker客户端连接失败: {e}")
            raise EngineUnavailableError(f"无法连接到Docker: {e}") from e

    def close(self) -> None:
        """关闭自行创建的 Engine 客户端"""
        if self._owns_client:
            self._client.close()

    # ------------------------------------------------------------------
    # 子进程调度
    # ------------------------------------------------------------------

    def _build_args(self, command: ComposeCommand, tokens: List[str]) -> List[str]:
        return [self.bin, "compose", command.value, *tokens]

    def _dispatch(self, command: ComposeCommand, *tokens: str) -> CommandResult:
        """所有子命令共用的启动入口"""
        args = self._build_args(command, list(tokens))
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise LaunchError(f"已取消，未启动: {' '.join(args)}")

        logger.info(f"执行命令: {' '.join(args)}")
        if self.mode is ExecutionMode.PIPE:
            return self._launch(args)
        return self._run(args)

    def _launch(self, args: List[str]) -> Pipes:
        try:
            process = subprocess.Popen(
                args,
                cwd=str(self.project_path),
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            logger.error(f"命令启动失败: {e}")
            raise LaunchError(f"命令启动失败: {e}") from e

        pipes = Pipes.from_process(process)
        try:
            self._tracker.track(process, args)
        except Exception as e:
            logger.error(f"无法跟踪命令，终止进程: {e}")
            process.kill()
            try:
                pipes.close()
            except StreamCloseError as close_error:
                logger.warning(f"关闭管道失败: {close_error}")
            process.wait()
            raise LaunchError(f"无法跟踪命令: {e}") from e
        return pipes

    def _run(self, args: List[str]) -> CompletedCommand:
        try:
            completed = subprocess.run(
                args,
                cwd=str(self.project_path),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=self.settings.command_timeout,
                check=False,
            )
        except OSError as e:
            logger.error(f"命令启动失败: {e}")
            raise LaunchError(f"命令启动失败: {e}") from e
        except subprocess.TimeoutExpired as e:
            logger.error(f"命令执行超时: {' '.join(args)}")
            raise CommandFailedError(args, None) from e

        if completed.returncode != 0:
            raise CommandFailedError(args, completed.returncode)
        return CompletedCommand(args=args, returncode=completed.returncode)

    @staticmethod
    def _service_args(service: Optional[str]) -> List[str]:
        if service is None:
            return []
        return [sanitize_name(service)]

    def wait(self, timeout: Optional[float] = None) -> List[FailedInvocation]:
        """等待所有后台命令结束，返回期间失败的调用"""
        return self._tracker.wait(timeout)

    # ------------------------------------------------------------------
    # compose 子命令，service 为 None 时作用于全部服务
    # ------------------------------------------------------------------

    def up(self) -> CommandResult:
        """创建并在后台启动容器"""
        return self._dispatch(ComposeCommand.UP, "-d")

    def down(self, service: Optional[str] = None) -> CommandResult:
        """停止并删除 up 创建的容器、网络"""
        return self._dispatch(ComposeCommand.DOWN, *self._service_args(service))

    def build(self, service: Optional[str] = None) -> CommandResult:
        return self._dispatch(ComposeCommand.BUILD, *self._service_args(service))

    def create(self, service: Optional[str] = None) -> CommandResult:
        return self._dispatch(ComposeCommand.CREATE, *self._service_args(service))

    def start(self, service: Optional[str] = None) -> CommandResult:
        return self._dispatch(ComposeCommand.START, *self._service_args(service))

    def stop(self, service: Optional[str] = None) -> CommandResult:
        return self._dispatch(ComposeCommand.STOP, *self._service_args(service))

    def restart(self, service: Optional[str] = None) -> CommandResult:
        return self._dispatch(ComposeCommand.RESTART, *self._service_args(service))

    def kill(self, service: Optional[str] = None) -> CommandResult:
        """强制停止运行中的容器，不删除"""
        return self._dispatch(ComposeCommand.KILL, *self._service_args(service))

    def pause(self, service: Optional[str] = None) -> CommandResult:
        return self._dispatch(ComposeCommand.PAUSE, *self._service_args(service))

    def unpause(self, service: Optional[str] = None) -> CommandResult:
        return self._dispatch(ComposeCommand.UNPAUSE, *self._service_args(service))

    def rm(self, service: Optional[str] = None) -> CommandResult:
        """删除已停止的服务容器"""
        return self._dispatch(ComposeCommand.RM, *self._service_args(service))

    def top(self, service: Optional[str] = None) -> CommandResult:
        return self._dispatch(ComposeCommand.TOP, *self._service_args(service))

    def pull(self, service: Optional[str] = None) -> CommandResult:
        return self._dispatch(ComposeCommand.PULL, *self._service_args(service))

    def push(self, service: Optional[str] = None) -> CommandResult:
        return self._dispatch(ComposeCommand.PUSH, *self._service_args(service))

    def events(self, service: Optional[str] = None) -> CommandResult:
        """实时事件流，需配合管道模式读取"""
        return self._dispatch(ComposeCommand.EVENTS, *self._service_args(service))

    def logs(self, service: Optional[str] = None, follow: bool = False) -> CommandResult:
        tokens = ["--follow"] if follow else []
        return self._dispatch(ComposeCommand.LOGS, *tokens, *self._service_args(service))

    def logs_stream(self, service: Optional[str] = None) -> CommandResult:
        return self.logs(service, follow=True)

    def exec(self, service: str, *commands: str) -> CommandResult:
        """在运行中的容器内执行命令，commands 不做过滤"""
        return self._dispatch(ComposeCommand.EXEC, sanitize_name(service), *commands)

    def run(self, service: str, *commands: str) -> CommandResult:
        """运行一次性命令，结束后自动删除容器"""
        return self._dispatch(ComposeCommand.RUN, "--rm", sanitize_name(service), *commands)

    def convert(self) -> CommandResult:
        """输出规范化后的 compose 配置"""
        return self._dispatch(ComposeCommand.CONVERT)

    def cp(self, source: str, destination: str) -> CommandResult:
        """在服务容器与本地文件系统之间复制文件"""
        return self._dispatch(ComposeCommand.CP, source, destination)

    # ------------------------------------------------------------------
    # Engine API 只读查询
    # ------------------------------------------------------------------

    def _compose_filters(self) -> Dict[str, str]:
        return {"label": f"{PROJECT_LABEL}={self.project_name}"}

    def _list(self, kind: str, **kwargs: Any) -> List[Any]:
        collection = getattr(self._client, kind)
        try:
            return collection.list(filters=self._compose_filters(), **kwargs)
        except (DockerException, RequestException) as e:
            logger.error(f"查询 {kind} 失败: {e}")
            raise ListingError(f"查询 {kind} 失败: {e}") from e

    def containers(self, include_stopped: bool = False) -> List[Container]:
        """项目下的容器，include_stopped 为 True 时包含已停止的容器"""
        containers = self._list("containers", all=include_stopped)
        return [c for c in containers if (c.labels or {}).get(PROJECT_LABEL) == self.project_name]

    def ps(self) -> List[Container]:
        return self.containers(False)

    def ps_all(self) -> List[Container]:
        return self.containers(True)

    def networks(self) -> list:
        return self._list("networks")

    def volumes(self) -> list:
        return self._list("volumes")

    def images(self) -> list:
        return self._list("images")

    def port(self, service: str, private_port: Optional[int] = None) -> List[PortBinding]:
        """服务运行中容器的已发布端口，private_port 可限定容器端口"""
        target = sanitize_name(service)
        bindings: List[PortBinding] = []
        for container in self.containers(False):
            if (container.labels or {}).get(SERVICE_LABEL) != target:
                continue
            for port_spec, published in (container.ports or {}).items():
                port_text, _, protocol = port_spec.partition("/")
                container_port = int(port_text)
                if private_port is not None and container_port != private_port:
                    continue
                for entry in published or []:
                    host_port = entry.get("HostPort")
                    bindings.append(PortBinding(
                        service=target,
                        container_id=container.id,
                        private_port=container_port,
                        protocol=protocol or "tcp",
                        host_ip=entry.get("HostIp") or None,
                        host_port=int(host_port) if host_port else None,
                    ))
        return bindings
