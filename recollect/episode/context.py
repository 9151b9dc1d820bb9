"""
Episode titles.

Asks the LLM for a ten-word description of what an episode was about,
seasoned with hints (dependencies, directories, known tags). No LLM, or any
failure, gives the plain "Episode with N messages".
"""

from typing import Optional

from recollect.hints import format_hints
from recollect.interfaces import HintsProvider, LlmProvider
from recollect.log import get_logger
from recollect.models import Message, ProjectContext

logger = get_logger("episode.context")


def fallback_description(messages: list[Message]) -> str:
    return f"Episode with {len(messages)} messages"


class EpisodeContextGenerator:
    def __init__(self, llm: Optional[LlmProvider] = None, hints: Optional[HintsProvider] = None):
        self._llm = llm
        self._hints = hints

    async def _hint_line(self, project: Optional[ProjectContext]) -> str:
        if self._hints is None:
            return ""
        try:
            return format_hints(await self._hints.get_hints(project))
        except Exception as e:
            logger.debug(f"Hints failed: {e}")
            return ""

    async def build_prompt(self, messages: list[Message], project: Optional[ProjectContext] = None) -> str:
        convo = "\n".join(f"{m.role}: {m.content[:300]}" for m in messages)
        project_line = ""
        if project is not None:
            stack = project.language + (f"/{project.framework}" if project.framework else "")
            project_line = f"Project: {project.workspace_name} ({stack})"
        hint_line = await self._hint_line(project)
        return f"""Summarize this technical conversation episode in at most 10 words, focusing on the main topic and outcome.
{project_line}
{hint_line}

Conversation:
{convo}

Return JSON: {{"description": "your 10-word summary"}}"""

    async def describe(self, messages: list[Message], project: Optional[ProjectContext] = None) -> str:
        if self._llm is None:
            return fallback_description(messages)
        try:
            prompt = await self.build_prompt(messages, project)
            reply = await self._llm.generate_json(prompt, temperature=0.2, max_tokens=80)
        except Exception as e:
            logger.warning(f"Episode description failed: {e}")
            return fallback_description(messages)
        text = ""
        if isinstance(reply, dict):
            text = reply.get("description") or reply.get("summary") or ""
        text = text.strip() if isinstance(text, str) else ""
        return text or fallback_description(messages)
