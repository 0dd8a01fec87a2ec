"""
管道包与后台进程跟踪器测试
"""

import subprocess
import sys
import threading
import time
from unittest.mock import Mock, patch

import pytest

from compose_client.docker.errors import StreamCloseError, TrackerTimeoutError
from compose_client.docker.pipes import Pipes
from compose_client.docker.tracker import ProcessTracker


def _spawn(code: str) -> subprocess.Popen:
    return subprocess.Popen(
        [sys.executable, "-c", code],
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )


class TestPipes:
    """测试管道包"""

    def test_stdout_bytes(self):
        """测试完整读取标准输出"""
        process = _spawn("import sys; sys.stdout.write('hello')")
        with Pipes.from_process(process) as pipes:
            assert pipes.stdout_bytes() == b"hello"
        process.wait()

    def test_string_order(self):
        """测试 stdout 在前 stderr 在后"""
        code = (
            "import sys, time\n"
            "sys.stderr.write('err'); sys.stderr.flush()\n"
            "time.sleep(0.1)\n"
            "sys.stdout.write('out')\n"
        )
        process = _spawn(code)
        pipes = Pipes.from_process(process)
        assert pipes.string() == "outerr"
        pipes.close()
        process.wait()

    def test_feed_stdin(self):
        """测试写入标准输入"""
        process = _spawn("import sys; sys.stdout.write(sys.stdin.read().upper())")
        pipes = Pipes.from_process(process)
        pipes.feed(b"abc")
        assert pipes.stdout_string() == "ABC"
        pipes.close()
        process.wait()

    def test_read_after_close(self):
        """测试关闭后读取返回空"""
        process = _spawn("print('x')")
        pipes = Pipes.from_process(process)
        pipes.close()
        assert pipes.stdout_bytes() == b""
        assert pipes.stderr_bytes() == b""
        process.wait()

    def test_read_after_drain(self):
        """测试读完后再次读取返回空"""
        process = _spawn("print('x')")
        pipes = Pipes.from_process(process)
        assert pipes.stdout_bytes().strip() == b"x"
        assert pipes.stdout_bytes() == b""
        pipes.close()
        process.wait()

    def test_missing_streams(self):
        """测试缺失的流"""
        pipes = Pipes()
        assert pipes.string() == ""
        pipes.close()
        with pytest.raises(ValueError):
            pipes.feed(b"data")

    def test_close_attempts_all_streams(self):
        """测试某个流关闭失败时仍关闭其余流"""
        stdin = Mock()
        stdin.close.side_effect = OSError("broken pipe")
        stdout = Mock()
        stderr = Mock()
        stderr.close.side_effect = OSError("bad fd")

        pipes = Pipes(stdin=stdin, stdout=stdout, stderr=stderr)
        with pytest.raises(StreamCloseError) as exc_info:
            pipes.close()

        stdin.close.assert_called_once()
        stdout.close.assert_called_once()
        stderr.close.assert_called_once()
        assert len(exc_info.value.errors) == 2


class TestProcessTracker:
    """测试后台进程跟踪器"""

    def setup_method(self):
        """测试前设置"""
        self.tracker = ProcessTracker()

    def test_wait_without_processes(self):
        """测试没有登记进程时立即返回"""
        start = time.time()
        assert self.tracker.wait() == []
        assert time.time() - start < 1
        assert self.tracker.outstanding == 0

    @pytest.mark.parametrize("count", [1, 10])
    def test_wait_for_all(self, count):
        """测试等待所有进程退出"""
        processes = []
        for i in range(count):
            process = subprocess.Popen([sys.executable, "-c", f"import time; time.sleep({0.05 * (i % 3)})"])
            self.tracker.track(process)
            processes.append(process)

        failures = self.tracker.wait(timeout=30)

        assert failures == []
        assert all(p.poll() is not None for p in processes)
        assert self.tracker.outstanding == 0

    def test_failures_reported(self):
        """测试非零退出码被收集但不影响计数"""
        ok = subprocess.Popen([sys.executable, "-c", "pass"])
        bad = subprocess.Popen([sys.executable, "-c", "import sys; sys.exit(3)"])
        self.tracker.track(ok, ["ok"])
        self.tracker.track(bad, ["bad"])

        failures = self.tracker.wait(timeout=30)

        assert len(failures) == 1
        assert failures[0].args == ["bad"]
        assert failures[0].returncode == 3
        # 失败记录只返回一次
        assert self.tracker.wait() == []

    def test_wait_includes_late_registration(self):
        """测试等待期间登记的进程同样会被等待"""
        first = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(0.3)"])
        self.tracker.track(first)
        late = {}

        def register_late():
            time.sleep(0.1)
            late["process"] = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(0.5)"])
            self.tracker.track(late["process"])

        thread = threading.Thread(target=register_late)
        thread.start()
        self.tracker.wait(timeout=30)
        thread.join()

        assert first.poll() is not None
        assert late["process"].poll() is not None

    def test_wait_timeout(self):
        """测试等待超时"""
        process = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(2)"])
        self.tracker.track(process)

        with pytest.raises(TrackerTimeoutError):
            self.tracker.wait(timeout=0.05)

        self.tracker.wait(timeout=30)

    def test_wait_error_is_reported(self):
        """测试等待进程时的异常被记录"""
        process = Mock()
        process.pid = 1234
        process.args = ["docker", "compose", "up"]
        process.wait.side_effect = RuntimeError("boom")

        self.tracker.track(process)
        failures = self.tracker.wait(timeout=5)

        assert len(failures) == 1
        assert failures[0].error == "boom"
        assert failures[0].args == ["docker", "compose", "up"]


class TestProcessTrackerStartFailure:
    """测试守护线程启动失败"""

    def test_count_restored(self):
        """测试线程启动失败后计数回退，wait 不会阻塞"""
        tracker = ProcessTracker()
        process = Mock()
        process.pid = 42
        process.args = ["docker", "compose", "up"]

        with patch("compose_client.docker.tracker.threading.Thread.start",
                   side_effect=RuntimeError("can't start new thread")):
            with pytest.raises(RuntimeError):
                tracker.track(process)

        assert tracker.outstanding == 0
        assert tracker.wait(timeout=1) == []
