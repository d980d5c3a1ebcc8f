import asyncio

import httpx
import numpy as np
import pytest

from studybuddy_brain.errors import (
    IncompleteResponse,
    ProviderRateLimited,
    ProviderRejected,
    ProviderServerError,
    ProviderTransientError,
)
from studybuddy_brain.model.descriptor import ProviderDescriptor
from studybuddy_brain.model_fetchers import (
    HuggingFaceFetcher,
    LocalFetcher,
    OpenAIFetcher,
    OpenRouterFetcher,
    build_fetcher,
)
from studybuddy_brain.model_fetchers.local_fetcher import hash_embed


def _descriptor(provider_type="openai", **extras):
    return ProviderDescriptor.from_dict({"id": "p", "type": provider_type, "api_key": "sk-test", **extras})


def _respond(monkeypatch, status=200, payload=None, headers=None, error=None):
    seen = {}

    async def fake_post(self, url, json=None, headers=None, **kwargs):
        seen["url"] = url
        seen["json"] = json
        seen["headers"] = headers
        if error is not None:
            raise error
        return httpx.Response(status, json=payload, headers=resp_headers, request=httpx.Request("POST", url))

    resp_headers = headers or {}
    monkeypatch.setattr(httpx.AsyncClient, "post", fake_post)
    return seen


def _complete(fetcher):
    return asyncio.run(fetcher.generate_completion("What is an atom?", "be brief", 1.0))


def test_openai_completion(monkeypatch):
    seen = _respond(monkeypatch, payload={"choices": [{"message": {"content": "An atom is tiny."}, "finish_reason": "stop"}]})
    assert _complete(OpenAIFetcher(_descriptor(model="gpt-test"))) == "An atom is tiny."
    assert seen["url"].endswith("/chat/completions")
    assert seen["json"]["model"] == "gpt-test"
    assert seen["json"]["messages"][0] == {"role": "system", "content": "be brief"}
    assert seen["headers"]["Authorization"] == "Bearer sk-test"


def test_rate_limit_carries_retry_after(monkeypatch):
    _respond(monkeypatch, status=429, payload={}, headers={"retry-after": "12"})
    with pytest.raises(ProviderRateLimited) as info:
        _complete(OpenAIFetcher(_descriptor()))
    assert info.value.retry_after == 12.0


@pytest.mark.parametrize(
    "status,error",
    [(503, ProviderServerError), (401, ProviderRejected)],
)
def test_http_errors_are_classified(monkeypatch, status, error):
    _respond(monkeypatch, status=status, payload={"error": "nope"})
    with pytest.raises(error):
        _complete(OpenAIFetcher(_descriptor()))


def test_connection_error_is_transient(monkeypatch):
    _respond(monkeypatch, error=httpx.ConnectError("connection refused"))
    with pytest.raises(ProviderTransientError):
        _complete(OpenAIFetcher(_descriptor()))


def test_truncated_completion_is_incomplete(monkeypatch):
    _respond(monkeypatch, payload={"choices": [{"message": {"content": "An atom is"}, "finish_reason": "length"}]})
    with pytest.raises(IncompleteResponse):
        _complete(OpenAIFetcher(_descriptor()))


def test_missing_api_key_rejected(monkeypatch):
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    fetcher = OpenRouterFetcher(ProviderDescriptor.from_dict({"id": "or", "type": "openrouter"}))
    with pytest.raises(ProviderRejected):
        _complete(fetcher)


def test_openai_embedding(monkeypatch):
    _respond(monkeypatch, payload={"data": [{"embedding": [0.1, 0.2, 0.3]}]})
    vector = asyncio.run(OpenAIFetcher(_descriptor()).embed_text("atom", 1.0))
    assert vector == pytest.approx([0.1, 0.2, 0.3])


def test_huggingface_mean_pools_token_embeddings(monkeypatch):
    _respond(monkeypatch, payload=[[1.0, 3.0], [3.0, 5.0]])
    fetcher = HuggingFaceFetcher(_descriptor("huggingface", capabilities=["embedding"]))
    assert asyncio.run(fetcher.embed_text("atom", 1.0)) == pytest.approx([2.0, 4.0])


def test_embedding_requires_capability():
    fetcher = HuggingFaceFetcher(_descriptor("huggingface"))
    with pytest.raises(ProviderRejected):
        asyncio.run(fetcher.embed_text("atom", 1.0))


def test_hash_embed_is_deterministic_and_normalised():
    a = hash_embed("photosynthesis needs sunlight", 32)
    b = hash_embed("photosynthesis needs sunlight", 32)
    assert np.allclose(a, b)
    assert float(np.linalg.norm(a)) == pytest.approx(1.0)
    assert not hash_embed("", 32).any()


def test_local_fetcher_and_factory():
    fetcher = build_fetcher(ProviderDescriptor.from_dict({"id": "dev", "dims": 8}))
    assert isinstance(fetcher, LocalFetcher)
    assert len(asyncio.run(fetcher.embed_text("hello world", 1.0))) == 8
    assert asyncio.run(fetcher.health_probe(1.0)) is True
    assert isinstance(build_fetcher(_descriptor("groq")), OpenAIFetcher)
