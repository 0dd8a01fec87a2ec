import logging
import os

from compose_client.docker import ComposeClient

logging.basicConfig(level=logging.INFO)

cli = ComposeClient(os.environ["project_path"])
pipes = cli.up()
print(pipes.string())
pipes.close()
failed = cli.wait()
print("failed=", [" ".join(f.args) for f in failed])
