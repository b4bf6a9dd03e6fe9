import os
import tempfile

os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "repair-planner-test-logs"))

import pytest
import pytest_asyncio

from repair_planner.tools.store_connect import DocumentStore

# Use in-memory SQLite for tests
DB_URL = "sqlite+aiosqlite:///:memory:"


class StubAgent:
    """Deterministic stand-in for the generative agent."""

    name = "StubAgent"

    def __init__(self, response: str):
        self.response = response
        self.prompts: list[str] = []

    async def invoke(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.response


@pytest_asyncio.fixture
async def store():
    store = DocumentStore.from_url(DB_URL, page_size=2)
    await store.ensure_containers()
    yield store
    await store.close()


@pytest.fixture
def stub_agent_factory():
    return StubAgent
