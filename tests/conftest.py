"""Shared fixtures."""

from typing import Any

import pytest
import pytest_asyncio
from langchain_core.messages import AIMessage

from aidetect_bot.config import Config
from aidetect_bot.services.database import init_db_service
from aidetect_bot.services.detection_service import DetectionService

WELL_FORMED_ANSWER = """**Title:** Golden Retriever Portrait!
**Meta Description:** a dog sitting on grass, looking at the camera.
**Detailed Description:** A golden retriever sits on a lawn in soft afternoon light.

The background is blurred and warm.
**Confidence Analysis:** This image scored 85% likelihood of being AI-generated.
• Textures: Fur is unusually uniform.
• Other Details: The grass repeats."""


def make_config(**overrides: Any) -> Config:
    """Config with fake credentials; keyword overrides are merged per section."""
    data: dict[str, Any] = {
        "twitter": {
            "bot_username": "testbot",
            "api_key": "consumer-key",
            "api_key_secret": "consumer-secret",
            "access_token": "access-token",
            "access_token_secret": "access-secret",
            "bearer_token": "bearer",
        },
        "detection": {"api_key": "detect-key"},
        "llm": {"api_key": "llm-key"},
        "bot": {"share_base_url": "https://aidetect.test/d"},
    }
    for section, values in overrides.items():
        data.setdefault(section, {}).update(values)
    return Config(**data)


class FakeChatModel:
    """Stands in for a LangChain chat model."""

    def __init__(self, content: str = WELL_FORMED_ANSWER, error: Exception | None = None):
        self.content = content
        self.error = error
        self.calls: list = []

    async def ainvoke(self, messages):
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        return AIMessage(content=self.content)


@pytest.fixture
def config() -> Config:
    return make_config()


@pytest_asyncio.fixture
async def db_service(tmp_path):
    service = await init_db_service(tmp_path / "test.db")
    yield service
    await service.close()


@pytest.fixture
def detection_service(db_service) -> DetectionService:
    return DetectionService(db_service)
