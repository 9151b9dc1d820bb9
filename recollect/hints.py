"""
Hints - vocabulary that helps the LLM name an episode.

"Fixed the flaky test" is a worse title than "Fixed flaky pytest-asyncio
fixture in tests/". Hints supply those nouns:
- FileSystemHintsProvider: dependency names and top-level directories
- MemoryHintsProvider: capitalized terms from facts we already stored
- AutoHintsProvider: both

Hints are garnish. Every provider returns an empty Hints on any failure.
"""

import asyncio
import json
import re
from pathlib import Path
from typing import Optional

from recollect.interfaces import Hints, VectorStore
from recollect.log import get_logger
from recollect.models import FactCategory, ProjectContext

logger = get_logger("hints")

MAX_DEPS = 20
MAX_DIRS = 10
MAX_TAGS = 15
IGNORED_DIRS = {"node_modules", ".git", "dist", "build", "out", ".vscode", ".recollect", "__pycache__", ".venv"}

_REQUIREMENT_NAME = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)")
_TECH_TERM = re.compile(r"\b[A-Z][A-Za-z0-9_-]+\b")


def _read(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None


def _package_json_deps(root: Path) -> list[str]:
    text = _read(root / "package.json")
    if not text:
        return []
    try:
        data = json.loads(text)
    except ValueError:
        return []
    deps = dict(data.get("dependencies") or {})
    deps.update(data.get("devDependencies") or {})
    return list(deps)


def _requirement_names(lines) -> list[str]:
    names = []
    for line in lines:
        line = line.strip()
        if not line or line.startswith(("#", "-")):
            continue
        match = _REQUIREMENT_NAME.match(line)
        if match:
            names.append(match.group(1))
    return names


def _requirements_deps(root: Path) -> list[str]:
    text = _read(root / "requirements.txt")
    return _requirement_names(text.splitlines()) if text else []


def _pyproject_deps(root: Path) -> list[str]:
    text = _read(root / "pyproject.toml")
    if not text:
        return []
    match = re.search(r"^dependencies\s*=\s*\[(.*?)\]", text, re.MULTILINE | re.DOTALL)
    if not match:
        return []
    return _requirement_names(re.findall(r"[\"']([^\"']+)[\"']", match.group(1)))


def _cargo_deps(root: Path) -> list[str]:
    text = _read(root / "Cargo.toml")
    if not text:
        return []
    match = re.search(r"\[dependencies\](.*?)(?=^\[|\Z)", text, re.MULTILINE | re.DOTALL)
    if not match:
        return []
    names = []
    for line in match.group(1).splitlines():
        name = line.split("=")[0].strip()
        if name and not name.startswith("#"):
            names.append(name)
    return names


class FileSystemHintsProvider:
    """Dependency names from manifests plus top-level directories."""

    def __init__(self, workspace_path: str, extra: Optional[list[str]] = None):
        self.workspace_path = Path(workspace_path)
        self.extra = list(extra or [])

    def _collect(self) -> Hints:
        deps: list[str] = []
        for reader in (_package_json_deps, _requirements_deps, _pyproject_deps, _cargo_deps):
            for name in reader(self.workspace_path):
                if name not in deps:
                    deps.append(name)

        try:
            dirs = sorted(
                entry.name for entry in self.workspace_path.iterdir()
                if entry.is_dir() and entry.name not in IGNORED_DIRS
            )
        except OSError:
            dirs = []

        return Hints(deps=deps[:MAX_DEPS], dirs=dirs[:MAX_DIRS], extra=list(self.extra))

    async def get_hints(self, project: Optional[ProjectContext] = None) -> Hints:
        try:
            return await asyncio.to_thread(self._collect)
        except Exception as e:
            logger.debug(f"Workspace hints unavailable: {e}")
            return Hints(extra=list(self.extra))


class MemoryHintsProvider:
    """Capitalized technical terms from stored infrastructure and pattern facts."""

    PAGE = 100

    def __init__(self, store: VectorStore, workspace_id: str):
        self._store = store
        self.workspace_id = workspace_id

    async def get_hints(self, project: Optional[ProjectContext] = None) -> Hints:
        try:
            tags: list[str] = []
            for category in (FactCategory.INFRASTRUCTURE, FactCategory.PATTERN):
                records, _ = await self._store.filter(
                    self.PAGE,
                    {"workspace_id": self.workspace_id, "category": category.value},
                )
                for record in records:
                    for term in _TECH_TERM.findall(str(record.payload.get("content", ""))):
                        if 2 < len(term) < 20 and term not in tags:
                            tags.append(term)
            return Hints(memory_tags=tags[:MAX_TAGS])
        except Exception as e:
            logger.warning(f"Memory hints unavailable: {e}")
            return Hints()


class AutoHintsProvider:
    """Memory tags when we have any, workspace hints always."""

    def __init__(self, workspace: FileSystemHintsProvider, memory: Optional[MemoryHintsProvider] = None):
        self._workspace = workspace
        self._memory = memory

    async def get_hints(self, project: Optional[ProjectContext] = None) -> Hints:
        hints = await self._workspace.get_hints(project)
        if self._memory is not None:
            memory = await self._memory.get_hints(project)
            hints.memory_tags = memory.memory_tags
        return hints


def format_hints(hints: Optional[Hints]) -> str:
    if hints is None:
        return ""
    parts = []
    if hints.deps:
        parts.append(f"Dependencies: {', '.join(hints.deps[:5])}")
    if hints.memory_tags:
        parts.append(f"Memory tags: {', '.join(hints.memory_tags[:5])}")
    if hints.dirs:
        parts.append(f"Key dirs: {', '.join(hints.dirs[:5])}")
    if hints.extra:
        parts.append(f"Keywords: {', '.join(hints.extra[:3])}")
    return f"Context: {'; '.join(parts)}" if parts else ""


def build_hints_provider(
    source: str,
    workspace_path: str,
    store: Optional[VectorStore] = None,
    extra: Optional[list[str]] = None,
):
    """Pick a provider for the configured hints source ("none" gives None)."""
    if source == "none":
        return None
    workspace = FileSystemHintsProvider(workspace_path, extra)
    if source == "workspace":
        return workspace
    memory = MemoryHintsProvider(store, workspace_path) if store is not None else None
    if source == "memory":
        return memory
    return AutoHintsProvider(workspace, memory)
