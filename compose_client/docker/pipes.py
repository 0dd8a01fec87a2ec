"""
子进程管道包

持有一次compose调用的标准输入、输出和错误流，提供完整读取与统一关闭。
"""

import logging
import subprocess
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import IO, List, Optional

from .errors import StreamCloseError


# 配置日志
logger = logging.getLogger(__name__)


def _drain(stream: Optional[IO[bytes]]) -> bytes:
    """读取流直到EOF，已关闭的流返回空字节"""
    if stream is None or stream.closed:
        return b""
    try:
        return stream.read()
    except ValueError:
        # 读取过程中被其他线程关闭
        return b""


@dataclass
class Pipes:
    """子进程的三个标准流"""
    stdin: Optional[IO[bytes]] = None
    stdout: Optional[IO[bytes]] = None
    stderr: Optional[IO[bytes]] = None

    @classmethod
    def from_process(cls, process: subprocess.Popen) -> "Pipes":
        """从已启动的进程获取管道"""
        return cls(stdin=process.stdin, stdout=process.stdout, stderr=process.stderr)

    def __enter__(self) -> "Pipes":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def feed(self, data: bytes, close: bool = True) -> None:
        """向子进程写入输入"""
        if self.stdin is None:
            raise ValueError("该管道包没有标准输入")
        self.stdin.write(data)
        self.stdin.flush()
        if close:
            self.stdin.close()

    def close(self) -> None:
        """关闭全部管道，任何一个失败都不会影响其余管道的关闭"""
        errors: List[OSError] = []
        for name in ("stdin", "stdout", "stderr"):
            stream = getattr(self, name)
            if stream is None:
                continue
            try:
                stream.close()
            except OSError as e:
                logger.warning(f"关闭 {name} 失败: {e}")
                errors.append(e)
        if errors:
            raise StreamCloseError(errors)

    def stdout_bytes(self) -> bytes:
        """读取全部标准输出"""
        return _drain(self.stdout)

    def stderr_bytes(self) -> bytes:
        """读取全部标准错误"""
        return _drain(self.stderr)

    def stdout_string(self) -> str:
        return self.stdout_bytes().decode("utf-8", errors="replace")

    def stderr_string(self) -> str:
        return self.stderr_bytes().decode("utf-8", errors="replace")

    def string(self) -> str:
        """并发读取标准输出和标准错误，按 stdout + stderr 顺序拼接"""
        with ThreadPoolExecutor(max_workers=2) as executor:
            out = executor.submit(self.stdout_string)
            err = executor.submit(self.stderr_string)
            return out.result() + err.result()

    def __str__(self) -> str:
        return self.string()
