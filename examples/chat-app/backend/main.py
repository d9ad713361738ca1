"""
Project Chat - Development Backend

Runs the real-time server against a seeded in-memory store.
Run with: python main.py  (after ``pip install -e .`` from the repository root)

Any token is accepted and used as the user id, e.g. ``/ws?token=alice``.
Data is not persisted.
"""

import logging
import os

from projectchat import MemoryStore, NoAuth, ProjectChatServer, Settings

logging.basicConfig(level=logging.DEBUG)

store = MemoryStore()
store.add_user("alice", full_name="Alice Liddell")
store.add_user("bob", full_name="Bob Builder")
store.add_user("carol", full_name="Carol Danvers")
store.add_friendship("alice", "bob")
store.add_friendship("bob", "carol")

store.set_project_owner("demo", "alice")
store.add_project_member("demo", "bob")
store.add_chat_room("general", "demo", name="General")
store.add_chat_room("design", "demo", name="Design")

settings = Settings(jwt_secret="dev-only-secret", _env_file=None)
server = ProjectChatServer(settings, store=store, auth_provider=NoAuth())

# Create FastAPI app
app = server.app


if __name__ == "__main__":
    import uvicorn
    bind_host = os.environ.get("BIND_HOST", "127.0.0.1")
    bind_port = int(os.environ.get("BIND_PORT", "8002"))
    uvicorn.run(app, host=bind_host, port=bind_port)
