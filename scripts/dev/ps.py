import os

from compose_client.docker import ComposeClient

cli = ComposeClient(os.environ["project_path"])
for container in cli.ps_all():
    print(container.labels.get("com.docker.compose.service"), container.status)
