from __future__ import annotations

from types import SimpleNamespace

import openai
import pytest

from search_hub.config import EmbeddingSettings
from search_hub.services.embeddings import EmbeddingError, OpenAIEmbeddingClient


class _FakeEmbeddings:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.requests: list[dict] = []

    def create(self, *, model, input, dimensions):
        self.requests.append({"model": model, "input": list(input), "dimensions": dimensions})
        if self.fail:
            raise openai.OpenAIError("rate limited")
        # Out of order on purpose; the client sorts by index.
        return SimpleNamespace(
            data=[
                SimpleNamespace(index=i, embedding=[float(i), float(len(text))])
                for i, text in reversed(list(enumerate(input)))
            ]
        )


def _client(fake: _FakeEmbeddings, batch_size: int = 2) -> OpenAIEmbeddingClient:
    config = EmbeddingSettings(api_key="test", model="text-embedding-3-small", dimensions=2, batch_size=batch_size)
    return OpenAIEmbeddingClient(config, client=SimpleNamespace(embeddings=fake))


def test_embed_batches_and_preserves_order() -> None:
    fake = _FakeEmbeddings()

    vectors = _client(fake).embed(["a", "bb", "ccc"])

    assert vectors == [[0.0, 1.0], [1.0, 2.0], [0.0, 3.0]]
    assert [request["input"] for request in fake.requests] == [["a", "bb"], ["ccc"]]
    assert fake.requests[0]["dimensions"] == 2


def test_empty_text_is_rejected() -> None:
    with pytest.raises(EmbeddingError):
        _client(_FakeEmbeddings()).embed(["fine", "  "])


def test_provider_errors_are_wrapped() -> None:
    with pytest.raises(EmbeddingError, match="rate limited"):
        _client(_FakeEmbeddings(fail=True)).embed(["text"])
