import asyncio
from types import SimpleNamespace

from studybuddy_brain.errors import EmbeddingError
from studybuddy_brain.memory.records import MemoryRecord
from studybuddy_brain.memory.retriever import (
    HISTORY_HEADER,
    PERSONAL_HEADER,
    MemoryRetriever,
    choose_level,
    extract_personal_facts,
)

from conftest import BrokenBackend, topic_vector


class StaticEmbedder:
    def __init__(self, fail=False):
        self.fail = fail

    async def embed(self, text):
        if self.fail:
            raise EmbeddingError("no embedding providers")
        return topic_vector(text)


def _request(message, personal=None, level=None, user="u1"):
    return SimpleNamespace(user_id=user, message=message, is_personal_query=personal, context_level=level)


def _remember(store, clock, message, response="ok", **kw):
    record = MemoryRecord.from_turn(
        "u1", "c1", message, response, retention_days=240, embedding=topic_vector(message), now=clock(), **kw
    )
    return asyncio.run(store.append(record))


def test_level_selection():
    assert choose_level(None, personal=True) == "comprehensive"
    assert choose_level(None, personal=False) == "balanced"
    assert choose_level("minimal", personal=True) == "minimal"
    assert choose_level("bogus", personal=False) == "balanced"


def test_personal_query_surfaces_name(make_store, clock):
    store = make_store()
    rid = _remember(store, clock, "My name is Kunal", "Nice to meet you!")
    retriever = MemoryRetriever(store, StaticEmbedder())
    bundle = asyncio.run(retriever.get_context(_request("Do you know my name?", personal=True)))
    assert bundle.level == "comprehensive"
    assert bundle.references == [rid]
    assert bundle.personal_facts["name"] == "Kunal"
    assert bundle.context.startswith(HISTORY_HEADER)
    assert PERSONAL_HEADER in bundle.context
    assert "- Name: Kunal" in bundle.context
    assert bundle.warnings == []


def test_general_query_does_not_add_personal_block(make_store, clock):
    store = make_store()
    _remember(store, clock, "My name is Kunal")
    retriever = MemoryRetriever(store, StaticEmbedder())
    bundle = asyncio.run(retriever.get_context(_request("what was my name again", personal=False)))
    assert bundle.level == "balanced"
    assert bundle.references
    assert PERSONAL_HEADER not in bundle.context


def test_char_budget_drops_lowest_scoring(make_store, clock):
    store = make_store()
    best = _remember(store, clock, "My name is Kunal", importance=5)
    _remember(store, clock, "People call me by my name " + "x" * 300, importance=1)
    retriever = MemoryRetriever(store, StaticEmbedder(), char_budget=120)
    bundle = asyncio.run(retriever.get_context(_request("my name", personal=True)))
    assert bundle.result.count_found == 2
    assert bundle.references == [best]
    assert len(bundle.records) == 1


def test_store_failure_yields_empty_bundle(make_store):
    retriever = MemoryRetriever(make_store(BrokenBackend()), StaticEmbedder())
    bundle = asyncio.run(retriever.get_context(_request("my name", personal=True)))
    assert bundle.result.count_found == 0
    assert bundle.context == ""
    assert bundle.references == []
    assert bundle.warnings[0].startswith("MemoryUnavailable")


def test_embedding_failure_falls_back_to_keywords(make_store, clock):
    store = make_store()
    rid = _remember(store, clock, "My name is Kunal")
    retriever = MemoryRetriever(store, StaticEmbedder(fail=True))
    bundle = asyncio.run(retriever.get_context(_request("Do you know my name?", personal=True)))
    assert bundle.result.keyword_only is True
    assert bundle.references == [rid]
    assert bundle.warnings[0].startswith("EmbeddingError")


def test_extract_personal_facts_reads_user_side_only():
    records = [
        MemoryRecord.from_turn("u", "c", "I like organic chemistry.", "Great!", retention_days=1),
        MemoryRecord.from_turn("u", "c", "what is an ion", "I am Sage, and an ion is charged.", retention_days=1),
        MemoryRecord.from_turn("u", "c", "call me Priya", "Sure", retention_days=1),
    ]
    facts = extract_personal_facts(records)
    assert facts["name"] == "Priya"
    assert facts["name_source"] == records[2].id
    assert facts["preferences"] == ["organic chemistry"]
