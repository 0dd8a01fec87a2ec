"""
Compose客户端异常定义
"""

from typing import List, Optional, Sequence


class ComposeClientError(Exception):
    """Compose客户端基础异常"""
    pass


class ToolNotFoundError(ComposeClientError):
    """docker可执行文件未找到"""
    pass


class ProjectNotFoundError(ComposeClientError):
    """compose定义文件不存在或不可读"""
    pass


class EngineUnavailableError(ComposeClientError):
    """无法连接Docker Engine API"""
    pass


class LaunchError(ComposeClientError):
    """子进程启动失败"""
    pass


class ListingError(ComposeClientError):
    """Engine API查询失败"""
    pass


class TrackerTimeoutError(ComposeClientError):
    """等待后台子进程超时"""
    pass


class CommandFailedError(ComposeClientError):
    """直接模式下命令以非零状态退出"""

    def __init__(self, args: Sequence[str], returncode: Optional[int]):
        self.command = list(args)
        self.returncode = returncode
        super().__init__(f"命令执行失败 (退出码 {returncode}): {' '.join(self.command)}")


class StreamCloseError(ComposeClientError):
    """关闭管道时出现一个或多个错误"""

    def __init__(self, errors: List[OSError]):
        self.errors = list(errors)
        detail = "; ".join(str(e) for e in self.errors)
        super().__init__(f"关闭 {len(self.errors)} 个管道失败: {detail}")
