#!/usr/bin/env python3
"""
Fact Extraction Tests

1. LLM replies are sanitized (trim, clamp, default, drop empties)
2. A failing LLM falls back to heuristics and never raises
3. Strict extraction with an explicit provider gives [] on failure
4. The prompt carries project metadata and a bounded transcript
"""

import pytest

from conftest import FakeLlm, conversation
from recollect.errors import LlmResponseError
from recollect.extractor import FactExtractor, build_transcript, heuristic_extract, sanitize_facts
from recollect.models import FactCategory, Message, ProjectContext

PROJECT = ProjectContext("shop", "python", "fastapi", "uv")


class TestSanitize:
    def test_cleans_reply(self):
        facts = sanitize_facts({"facts": [
            {"content": "  Uses PostgreSQL  ", "category": "infrastructure", "confidence": 0.9},
            {"content": "Sessions in Redis", "category": "ARCHITECTURE", "confidence": 3},
            {"content": "Tests next to code", "category": "nonsense", "confidence": -1},
            {"content": "No confidence given", "category": "pattern"},
            {"content": "Bool confidence", "category": "debugging", "confidence": True},
            {"content": "   ", "category": "pattern"},
            {"category": "pattern"},
            "not a dict",
        ]})

        assert [f.content for f in facts] == [
            "Uses PostgreSQL", "Sessions in Redis", "Tests next to code",
            "No confidence given", "Bool confidence",
        ]
        assert facts[0].category == FactCategory.INFRASTRUCTURE
        assert facts[1].category == FactCategory.ARCHITECTURE
        assert facts[1].confidence == 1.0
        assert facts[2].category == FactCategory.PATTERN
        assert facts[2].confidence == 0.0
        assert facts[3].confidence == 0.7
        assert facts[4].confidence == 0.7

    @pytest.mark.parametrize("reply", [{}, {"facts": "nope"}, {"facts": None}, []])
    def test_unusable_reply_is_empty(self, reply):
        assert sanitize_facts(reply) == []


class TestHeuristics:
    def test_keyword_rules(self):
        messages = conversation(
            "Let's build the UI in React with Next",
            "We'll store orders in Postgres via Prisma",
            "Login uses JWT",
            "There's a memory leak in the worker",
        )
        facts = heuristic_extract(messages)

        assert [(f.content, f.category, f.confidence) for f in facts] == [
            ("Frontend framework selected", FactCategory.INFRASTRUCTURE, 0.6),
            ("Database technology decision", FactCategory.INFRASTRUCTURE, 0.6),
            ("Authentication approach discussed", FactCategory.ARCHITECTURE, 0.55),
            ("Active debugging context detected", FactCategory.DEBUGGING, 0.5),
        ]

    def test_nothing_matches(self):
        assert heuristic_extract(conversation("hello", "hi there")) == []


class TestExtractFacts:
    @pytest.mark.asyncio
    async def test_uses_llm(self):
        llm = FakeLlm({"facts": [{"content": "Uses FastAPI", "category": "infrastructure", "confidence": 0.9}]})
        facts = await FactExtractor(llm).extract_facts(conversation("We picked FastAPI"), PROJECT)

        assert [f.content for f in facts] == ["Uses FastAPI"]
        assert llm.kwargs[0] == {"temperature": 0.1, "max_tokens": 1500}

    @pytest.mark.asyncio
    async def test_failing_llm_falls_back(self):
        llm = FakeLlm(LlmResponseError("quota exceeded"))
        facts = await FactExtractor(llm).extract_facts(conversation("Postgres keeps timing out with an error"), PROJECT)

        assert {f.content for f in facts} == {"Database technology decision", "Active debugging context detected"}

    @pytest.mark.asyncio
    async def test_failing_llm_never_raises(self):
        llm = FakeLlm(RuntimeError("socket closed"))
        facts = await FactExtractor(llm).extract_facts(conversation("nothing technical here"), PROJECT)

        assert facts == []

    @pytest.mark.asyncio
    async def test_no_llm_uses_heuristics(self):
        facts = await FactExtractor().extract_facts(conversation("Switching auth to OAuth"), PROJECT)

        assert facts[0].category == FactCategory.ARCHITECTURE

    @pytest.mark.asyncio
    async def test_empty_llm_answer_is_trusted(self):
        facts = await FactExtractor(FakeLlm({"facts": []})).extract_facts(conversation("React app"), PROJECT)

        assert facts == []


class TestExtractWithProvider:
    @pytest.mark.asyncio
    async def test_strict_failure_is_empty(self):
        extractor = FactExtractor(FakeLlm({"facts": [{"content": "unused", "category": "pattern"}]}))
        facts = await extractor.extract_facts_with_provider(
            conversation("React and Postgres"), PROJECT, FakeLlm(LlmResponseError("bad json"))
        )

        assert facts == []

    @pytest.mark.asyncio
    async def test_uses_given_provider(self):
        default = FakeLlm({"facts": [{"content": "from default", "category": "pattern"}]})
        override = FakeLlm({"facts": [{"content": "from override", "category": "pattern"}]})

        facts = await FactExtractor(default).extract_facts_with_provider(conversation("hi"), PROJECT, override)

        assert [f.content for f in facts] == ["from override"]
        assert default.prompts == []


class TestPrompt:
    @pytest.mark.asyncio
    async def test_prompt_has_project_and_transcript(self):
        llm = FakeLlm({"facts": []})
        await FactExtractor(llm).extract_facts(conversation("We use uv", "Noted"), PROJECT)

        prompt = llm.prompts[0]
        assert "python project" in prompt
        assert "Project: shop" in prompt
        assert "Framework: fastapi" in prompt
        assert "USER: We use uv" in prompt
        assert "ASSISTANT: Noted" in prompt

    def test_transcript_truncated(self):
        messages = [Message("user", "x" * 3000), Message("assistant", "y" * 3000)]
        assert len(build_transcript(messages)) == 4000
