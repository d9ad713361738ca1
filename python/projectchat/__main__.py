"""
Run the real-time server: ``python -m projectchat``.

Configuration comes from ``PROJECTCHAT_*`` environment variables.
"""

import logging

import uvicorn

from projectchat.config import Settings
from projectchat.server import ProjectChatServer


def main() -> None:
    settings = Settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    server = ProjectChatServer(settings)
    uvicorn.run(
        server.app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
