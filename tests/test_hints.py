#!/usr/bin/env python3
"""
Hints and Project Detection Tests

1. Workspace hints read manifests and top-level directories
2. Memory hints pull capitalized terms from stored facts
3. Hint failures give empty hints, never exceptions
4. Project detection guesses language, framework and package manager
"""

import json
from unittest.mock import AsyncMock

import pytest

from conftest import FakeLlm, InMemoryVectorStore, make_fact, unit
from recollect.episode.context import EpisodeContextGenerator
from recollect.hints import (
    AutoHintsProvider,
    FileSystemHintsProvider,
    MemoryHintsProvider,
    build_hints_provider,
    format_hints,
)
from recollect.interfaces import Hints
from recollect.models import FactCategory, Message, ProjectContext
from recollect.project import detect_project_context

WS = "/ws/demo"


class TestWorkspaceHints:
    @pytest.mark.asyncio
    async def test_manifests_and_dirs(self, tmp_path):
        (tmp_path / "package.json").write_text(json.dumps({
            "dependencies": {"react": "^18", "zod": "^3"},
            "devDependencies": {"vitest": "^1"},
        }))
        (tmp_path / "requirements.txt").write_text("# web\nfastapi>=0.110\n-r dev.txt\nuvicorn[standard]\n")
        for name in ("src", "tests", "node_modules", ".git", "docs"):
            (tmp_path / name).mkdir()

        hints = await FileSystemHintsProvider(str(tmp_path), ["billing"]).get_hints()

        assert hints.deps == ["react", "zod", "vitest", "fastapi", "uvicorn"]
        assert hints.dirs == ["docs", "src", "tests"]
        assert hints.extra == ["billing"]

    @pytest.mark.asyncio
    async def test_pyproject_and_cargo(self, tmp_path):
        (tmp_path / "pyproject.toml").write_text(
            '[project]\nname = "x"\ndependencies = [\n  "httpx>=0.27",\n  "pydantic",\n]\n'
        )
        (tmp_path / "Cargo.toml").write_text('[package]\nname = "x"\n\n[dependencies]\nserde = "1"\ntokio = { version = "1" }\n')

        hints = await FileSystemHintsProvider(str(tmp_path)).get_hints()

        assert hints.deps == ["httpx", "pydantic", "serde", "tokio"]

    @pytest.mark.asyncio
    async def test_caps(self, tmp_path):
        (tmp_path / "requirements.txt").write_text("\n".join(f"pkg{i}" for i in range(30)))
        for i in range(12):
            (tmp_path / f"dir{i:02d}").mkdir()

        hints = await FileSystemHintsProvider(str(tmp_path)).get_hints()

        assert len(hints.deps) == 20
        assert len(hints.dirs) == 10

    @pytest.mark.asyncio
    async def test_missing_workspace_is_empty(self):
        hints = await FileSystemHintsProvider("/definitely/not/here").get_hints()
        assert hints.is_empty()


class TestMemoryHints:
    @pytest.mark.asyncio
    async def test_terms_from_facts(self, store):
        for content, category in [
            ("Deploys on Fly with Docker", FactCategory.INFRASTRUCTURE),
            ("Use Zod for validation at the API edge", FactCategory.PATTERN),
            ("Login Crashes", FactCategory.DEBUGGING),
        ]:
            fact = make_fact(content, category, workspace_id=WS)
            await store.insert([unit(0)], [fact.id], [fact.to_payload()])

        hints = await MemoryHintsProvider(store, WS).get_hints()

        assert hints.memory_tags == ["Deploys", "Fly", "Docker", "Use", "Zod", "API"]

    @pytest.mark.asyncio
    async def test_store_failure_is_empty(self):
        store = InMemoryVectorStore()
        store.filter = AsyncMock(side_effect=RuntimeError("down"))

        hints = await MemoryHintsProvider(store, WS).get_hints()

        assert hints.is_empty()

    @pytest.mark.asyncio
    async def test_auto_combines(self, tmp_path, store):
        (tmp_path / "src").mkdir()
        fact = make_fact("Postgres via Prisma", FactCategory.INFRASTRUCTURE, workspace_id=str(tmp_path))
        await store.insert([unit(0)], [fact.id], [fact.to_payload()])

        provider = AutoHintsProvider(FileSystemHintsProvider(str(tmp_path)), MemoryHintsProvider(store, str(tmp_path)))
        hints = await provider.get_hints()

        assert hints.dirs == ["src"]
        assert hints.memory_tags == ["Postgres", "Prisma"]


class TestFormatting:
    def test_format_hints(self):
        hints = Hints(deps=["react", "zod"], dirs=["src"], memory_tags=["Postgres"], extra=["billing"])
        assert format_hints(hints) == (
            "Context: Dependencies: react, zod; Memory tags: Postgres; Key dirs: src; Keywords: billing"
        )

    def test_empty(self):
        assert format_hints(Hints()) == ""
        assert format_hints(None) == ""

    @pytest.mark.parametrize("source,kind", [
        ("workspace", FileSystemHintsProvider),
        ("memory", MemoryHintsProvider),
        ("auto", AutoHintsProvider),
    ])
    def test_build_provider(self, source, kind, store):
        assert isinstance(build_hints_provider(source, WS, store), kind)

    def test_none_source(self, store):
        assert build_hints_provider("none", WS, store) is None

    @pytest.mark.asyncio
    async def test_hints_reach_context_prompt(self, tmp_path):
        (tmp_path / "requirements.txt").write_text("django\n")
        generator = EpisodeContextGenerator(FakeLlm({"description": "x"}), FileSystemHintsProvider(str(tmp_path)))

        prompt = await generator.build_prompt([Message("user", "hi")], ProjectContext("shop", "python", "django"))

        assert "Context: Dependencies: django" in prompt
        assert "Project: shop (python/django)" in prompt


class TestProjectDetection:
    @pytest.mark.asyncio
    async def test_typescript_next_pnpm(self, tmp_path):
        (tmp_path / "package.json").write_text(json.dumps({
            "dependencies": {"next": "14", "react": "18"},
            "devDependencies": {"typescript": "5"},
        }))
        (tmp_path / "pnpm-lock.yaml").write_text("")

        context = await detect_project_context(str(tmp_path))

        assert (context.language, context.framework, context.package_manager) == ("typescript", "next", "pnpm")
        assert context.workspace_name == tmp_path.name

    @pytest.mark.asyncio
    async def test_package_manager_field_wins(self, tmp_path):
        (tmp_path / "package.json").write_text(json.dumps({
            "dependencies": {"express": "4"},
            "packageManager": "yarn@4.1.0",
        }))
        (tmp_path / "package-lock.json").write_text("{}")

        context = await detect_project_context(str(tmp_path))

        assert (context.language, context.framework, context.package_manager) == ("javascript", "express", "yarn")

    @pytest.mark.asyncio
    async def test_python_uv(self, tmp_path):
        (tmp_path / "pyproject.toml").write_text('[project]\ndependencies = ["fastapi"]\n\n[tool.uv]\ndev-dependencies = []\n')

        context = await detect_project_context(str(tmp_path))

        assert (context.language, context.framework, context.package_manager) == ("python", "fastapi", "uv")

    @pytest.mark.asyncio
    async def test_python_lockfile(self, tmp_path):
        (tmp_path / "requirements.txt").write_text("flask\n")
        (tmp_path / "Pipfile").write_text("")

        context = await detect_project_context(str(tmp_path))

        assert (context.language, context.framework, context.package_manager) == ("python", "flask", "pipenv")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("manifest,language,manager", [
        ("Cargo.toml", "rust", "cargo"),
        ("go.mod", "go", "go"),
    ])
    async def test_rust_and_go(self, tmp_path, manifest, language, manager):
        (tmp_path / manifest).write_text("")

        context = await detect_project_context(str(tmp_path))

        assert (context.language, context.package_manager) == (language, manager)

    @pytest.mark.asyncio
    async def test_unknown(self, tmp_path):
        context = await detect_project_context(str(tmp_path))
        assert context.language == "unknown"
        assert context.framework is None
