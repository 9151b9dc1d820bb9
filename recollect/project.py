"""
Project detection - what kind of codebase is this workspace?

Reads a few well-known files (package.json, pyproject.toml,
requirements.txt, Cargo.toml, go.mod, lockfiles) to guess the language,
framework and package manager. The extractor puts this in its prompt so
"use the ORM" means something.
"""

import asyncio
import json
from pathlib import Path

from recollect.log import get_logger
from recollect.models import ProjectContext

logger = get_logger("project")

JS_FRAMEWORKS = [
    "next", "react", "vue", "nuxt", "svelte", "angular",
    "nest", "express", "fastify", "koa", "astro",
]
PY_FRAMEWORKS = ["fastapi", "django", "flask"]

JS_LOCKFILES = [("pnpm-lock.yaml", "pnpm"), ("yarn.lock", "yarn"), ("package-lock.json", "npm")]
PY_LOCKFILES = [("uv.lock", "uv"), ("poetry.lock", "poetry"), ("pdm.lock", "pdm"), ("Pipfile", "pipenv")]
PYPROJECT_TOOLS = [("[tool.uv", "uv"), ("[tool.poetry", "poetry"), ("[tool.pdm", "pdm")]


def _text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return ""


def _detect(root: Path) -> ProjectContext:
    context = ProjectContext(workspace_name=root.name or str(root))

    package_json = _text(root / "package.json")
    if package_json:
        try:
            pkg = json.loads(package_json)
        except ValueError:
            pkg = {}
        dev = pkg.get("devDependencies") or {}
        deps = dict(pkg.get("dependencies") or {})
        deps.update(dev)
        context.language = "typescript" if "typescript" in dev or (root / "tsconfig.json").exists() else "javascript"
        context.framework = next((f for f in JS_FRAMEWORKS if f in deps), None)
        manager = pkg.get("packageManager")
        if isinstance(manager, str) and manager:
            context.package_manager = manager.split("@")[0]
        else:
            context.package_manager = next((m for f, m in JS_LOCKFILES if (root / f).exists()), None)

    pyproject = _text(root / "pyproject.toml")
    requirements = _text(root / "requirements.txt")
    has_python = bool(pyproject) or (root / "requirements.txt").exists()

    if has_python:
        context.language = "python"
        lowered = (requirements + "\n" + pyproject).lower()
        context.framework = next((f for f in PY_FRAMEWORKS if f in lowered), context.framework)
        if context.package_manager is None:
            context.package_manager = (
                next((m for marker, m in PYPROJECT_TOOLS if marker in pyproject), None)
                or next((m for f, m in PY_LOCKFILES if (root / f).exists()), None)
            )
    elif (root / "Cargo.toml").exists():
        context.language = "rust"
        context.package_manager = "cargo"
    elif (root / "go.mod").exists():
        context.language = "go"
        context.package_manager = "go"

    return context


async def detect_project_context(workspace_path: str) -> ProjectContext:
    """Best-effort guess; unreadable workspaces give language 'unknown'."""
    root = Path(workspace_path)
    try:
        return await asyncio.to_thread(_detect, root)
    except Exception as e:
        logger.debug(f"Project detection failed for {workspace_path}: {e}")
        return ProjectContext(workspace_name=root.name or workspace_path)
