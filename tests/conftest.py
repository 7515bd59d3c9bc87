import os
import tempfile
from typing import List

import pytest

# Keep persisted model settings out of the working tree.
os.environ.setdefault("MODEL_SETTINGS_PATH", os.path.join(tempfile.mkdtemp(), "model-settings.json"))

from llm_client import ModelGateway, ProviderClient, RequestOptions  # noqa: E402
from settings import default_model_settings  # noqa: E402


class FakeProvider(ProviderClient):
    """Replays canned replies (or raises canned exceptions) in order."""

    provider_id = "fake"

    def __init__(self, outputs: List[object]) -> None:
        self._outputs = list(outputs)
        self.prompts: List[str] = []
        self.options: List[RequestOptions] = []

    async def complete(self, prompt: str, options: RequestOptions) -> str:
        self.prompts.append(prompt)
        self.options.append(options)
        if not self._outputs:
            raise RuntimeError("no_more_outputs")
        next_item = self._outputs.pop(0)
        if isinstance(next_item, Exception):
            raise next_item
        return str(next_item)


@pytest.fixture
def make_gateway():
    """Gateway whose every provider id answers from one FakeProvider."""

    def _make(outputs: List[object]):
        fake = FakeProvider(outputs)
        providers = {pid: fake for pid in ("gemini", "gemini-vertex", "openrouter", "openai", "local")}
        return ModelGateway(providers, default_model_settings()), fake

    return _make
