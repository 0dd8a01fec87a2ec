"""
后台子进程跟踪器

每个子进程对应一个守护线程，线程只负责等待进程退出并递减计数；
wait() 阻塞到计数归零。
"""

import logging
import subprocess
import threading
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .errors import TrackerTimeoutError


# 配置日志
logger = logging.getLogger(__name__)


@dataclass
class FailedInvocation:
    """一次失败的后台调用"""
    args: List[str]
    returncode: Optional[int] = None
    error: Optional[str] = None


class ProcessTracker:
    """计数式的子进程汇合器"""

    def __init__(self):
        self._cond = threading.Condition()
        self._outstanding = 0
        self._failures: List[FailedInvocation] = []

    @property
    def outstanding(self) -> int:
        """尚未退出的子进程数量"""
        with self._cond:
            return self._outstanding

    def track(self, process: subprocess.Popen, args: Optional[Sequence[str]] = None) -> threading.Thread:
        """登记一个已启动的子进程"""
        command = list(args if args is not None else process.args)
        with self._cond:
            self._outstanding += 1

        watcher = threading.Thread(
            target=self._await_exit,
            args=(process, command),
            name=f"compose-wait-{process.pid}",
            daemon=True,
        )
        try:
            watcher.start()
        except Exception:
            with self._cond:
                self._outstanding -= 1
                if self._outstanding == 0:
                    self._cond.notify_all()
            raise
        return watcher

    def _await_exit(self, process: subprocess.Popen, command: List[str]) -> None:
        failure: Optional[FailedInvocation] = None
        try:
            returncode = process.wait()
            if returncode != 0:
                logger.warning(f"后台命令退出码 {returncode}: {' '.join(command)}")
                failure = FailedInvocation(args=command, returncode=returncode)
            else:
                logger.debug(f"后台命令完成: {' '.join(command)}")
        except Exception as e:
            logger.error(f"等待后台命令出错: {e}")
            failure = FailedInvocation(args=command, error=str(e))
        finally:
            with self._cond:
                if failure is not None:
                    self._failures.append(failure)
                self._outstanding -= 1
                if self._outstanding == 0:
                    self._cond.notify_all()

    def wait(self, timeout: Optional[float] = None) -> List[FailedInvocation]:
        """阻塞直到所有已登记的子进程退出

        返回自上次 wait() 以来收集到的失败调用。
        """
        with self._cond:
            finished = self._cond.wait_for(lambda: self._outstanding == 0, timeout)
            if not finished:
                raise TrackerTimeoutError(f"等待超时，仍有 {self._outstanding} 个子进程在运行")
            failures, self._failures = self._failures, []
            return failures
