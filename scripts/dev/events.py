import os
import threading

from compose_client.docker import ComposeClient

cancel = threading.Event()
cli = ComposeClient(os.environ["project_path"], cancel_event=cancel)
pipes = cli.events()
try:
    # 逐行打印事件，Ctrl+C 退出
    for line in pipes.stdout:
        print(line.decode("utf-8", errors="replace").rstrip())
except KeyboardInterrupt:
    cancel.set()
finally:
    pipes.close()
# docker compose events 同样收到 SIGINT，最多等待10秒
failed = cli.wait(timeout=10)
print("failed=", [" ".join(f.args) for f in failed])
