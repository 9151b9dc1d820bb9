"""
Fact extraction - pulling durable facts out of a conversation.

Two stages:
1. Ask the LLM for categorized facts (the good path)
2. If there is no LLM or it blows up, fall back to keyword heuristics

The heuristics are crude on purpose: they only note that *something* about
the frontend, database, auth or a bug came up. That still beats remembering
nothing when the model is down.
"""

import re
from typing import Any, Optional

from recollect.errors import LlmResponseError
from recollect.interfaces import LlmProvider
from recollect.log import get_logger
from recollect.models import CategorizedFactInput, FactCategory, Message, ProjectContext

logger = get_logger("extractor")

TRANSCRIPT_LIMIT = 4000
DEFAULT_CONFIDENCE = 0.7

# (pattern, content, category, confidence)
HEURISTIC_RULES = [
    (re.compile(r"react|vue|angular|next|svelte|astro"),
     "Frontend framework selected", FactCategory.INFRASTRUCTURE, 0.6),
    (re.compile(r"postgres|mysql|sqlite|mongodb|prisma"),
     "Database technology decision", FactCategory.INFRASTRUCTURE, 0.6),
    (re.compile(r"jwt|session|oauth|sso|auth"),
     "Authentication approach discussed", FactCategory.ARCHITECTURE, 0.55),
    (re.compile(r"error|exception|bug|fix|resolved|leak|memory"),
     "Active debugging context detected", FactCategory.DEBUGGING, 0.5),
]


def build_transcript(messages: list[Message], limit: int = TRANSCRIPT_LIMIT) -> str:
    return "\n".join(f"{m.role.upper()}: {m.content}" for m in messages)[:limit]


def build_prompt(messages: list[Message], project: ProjectContext) -> str:
    conversation = build_transcript(messages)
    return f"""You are organizing technical facts for a {project.language} project.
Project: {project.workspace_name}
Framework: {project.framework or "none"}
Package Manager: {project.package_manager or "unknown"}

Categories:
- infrastructure: core tech stack, database, deployment (persistent)
- architecture: design decisions and approaches (can be superseded)
- debugging: current problems and issues (temporary)
- pattern: solutions and lessons learned (persistent)

CONVERSATION EPISODE:
{conversation}

Return JSON: {{"facts": [{{"content": string, "category": "infrastructure"|"architecture"|"debugging"|"pattern", "confidence": number}}]}}"""


def _confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_CONFIDENCE
    if value != value:  # NaN
        return DEFAULT_CONFIDENCE
    return min(1.0, max(0.0, float(value)))


def sanitize_facts(reply: Any) -> list[CategorizedFactInput]:
    """Turn a raw {"facts": [...]} reply into clean candidates."""
    raw = reply.get("facts") if isinstance(reply, dict) else None
    if not isinstance(raw, list):
        return []
    facts = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        content = item.get("content")
        content = content.strip() if isinstance(content, str) else ""
        if not content:
            continue
        facts.append(CategorizedFactInput(
            content=content,
            category=FactCategory.parse(item.get("category")) or FactCategory.PATTERN,
            confidence=_confidence(item.get("confidence")),
        ))
    return facts


def heuristic_extract(messages: list[Message]) -> list[CategorizedFactInput]:
    text = " ".join((m.content or "") for m in messages).lower()
    return [
        CategorizedFactInput(content=content, category=category, confidence=confidence)
        for pattern, content, category, confidence in HEURISTIC_RULES
        if pattern.search(text)
    ]


class FactExtractor:
    """Usage:
        extractor = FactExtractor(llm)
        facts = await extractor.extract_facts(messages, project)
    """

    def __init__(self, llm: Optional[LlmProvider] = None):
        self._llm = llm

    async def _ask(self, llm: LlmProvider, messages: list[Message], project: ProjectContext):
        reply = await llm.generate_json(build_prompt(messages, project), temperature=0.1, max_tokens=1500)
        if not isinstance(reply, dict):
            raise LlmResponseError("Extraction reply is not a JSON object")
        return sanitize_facts(reply)

    async def extract_facts(self, messages: list[Message], project: ProjectContext) -> list[CategorizedFactInput]:
        """LLM first, heuristics when it fails. Never raises."""
        if self._llm is not None:
            try:
                facts = await self._ask(self._llm, messages, project)
                logger.debug(f"Extracted {len(facts)} facts from {len(messages)} messages")
                return facts
            except Exception as e:
                logger.warning(f"LLM extraction failed, using heuristics: {e}")
        return heuristic_extract(messages)

    async def extract_facts_with_provider(
        self,
        messages: list[Message],
        project: ProjectContext,
        llm: LlmProvider,
    ) -> list[CategorizedFactInput]:
        """Strict extraction with a caller-chosen provider: [] on failure, no heuristics."""
        try:
            return await self._ask(llm, messages, project)
        except Exception as e:
            logger.warning(f"Extraction with explicit provider failed: {e}")
            return []
