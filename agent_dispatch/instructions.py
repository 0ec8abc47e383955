"""Load prompt templates and assemble conversation instructions.

Templates follow a two-layer override system:
  1. Personal overrides in ``~/.agent-dispatch/instructions/`` (highest priority)
  2. Package defaults in ``agent_dispatch/instructions/``

Conversation instructions given by a caller are either literal text or a list
of instruction files to concatenate, optionally followed by context files.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping, Sequence

from agent_dispatch.logging import get_logger

log = get_logger(__name__)

_PERSONAL_DIR = Path("~/.agent-dispatch/instructions").expanduser()

CONTEXT_FILES_SEPARATOR = "# === Context Files ==="


class _SafeFormatDict(dict[str, str]):
    """Leave unknown placeholders untouched instead of raising KeyError."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


class InstructionLoader:
    """Read and render instruction templates with personal-override support.

    Resolution order for every template:
      1. ``personal_dir / name``  (``~/.agent-dispatch/instructions/``)
      2. ``base_dir / name``      (package ``instructions/``)
    """

    def __init__(
        self,
        base_dir: Path | str | None = None,
        personal_dir: Path | str | None = None,
    ):
        self.base_dir = self._resolve_base_dir(base_dir)
        self.personal_dir: Path = (
            Path(personal_dir).expanduser().resolve()
            if personal_dir is not None
            else _PERSONAL_DIR.resolve()
        )
        self._cache: dict[str, str] = {}

    @staticmethod
    def _resolve_base_dir(base_dir: Path | str | None) -> Path:
        if base_dir is not None:
            return Path(base_dir).expanduser().resolve()
        env_dir = os.getenv("AGENT_DISPATCH_INSTRUCTIONS_DIR")
        if env_dir:
            return Path(env_dir).expanduser().resolve()
        return (Path(__file__).resolve().parent / "instructions").resolve()

    def _path(self, name: str) -> Path:
        """Return the effective file path, preferring the personal override."""
        personal = self.personal_dir / name
        if personal.is_file():
            return personal
        return self.base_dir / name

    def is_overridden(self, name: str) -> bool:
        """Return ``True`` if a personal override exists for *name*."""
        return (self.personal_dir / name).is_file()

    def load(self, name: str) -> str:
        """Load instruction template content by filename."""
        cached = self._cache.get(name)
        if cached is not None:
            return cached

        path = self._path(name)
        if not path.is_file():
            raise FileNotFoundError(
                f"Instruction template not found: {path}. "
                "Add the file under the instructions folder."
            )
        content = path.read_text(encoding="utf-8").strip()
        self._cache[name] = content
        return content

    def render(self, name: str, **variables: object) -> str:
        """Render template with simple ``str.format`` placeholder substitution."""
        template = self.load(name)
        values: Mapping[str, str] = {k: str(v) for k, v in variables.items()}
        return template.format_map(_SafeFormatDict(values))


_loader: InstructionLoader | None = None


def get_instruction_loader() -> InstructionLoader:
    """Shared loader so every conversation reuses the template cache."""
    global _loader
    if _loader is None:
        _loader = InstructionLoader()
    return _loader


def set_instruction_loader(loader: InstructionLoader | None) -> None:
    global _loader
    _loader = loader


def _read_file_content(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        log.warning("Could not read instruction file", path=str(path), error=str(e))
        return None


def concatenate_instruction_files(file_paths: Sequence[Path | str] | None) -> str:
    """Concatenate files as ``# From: <name>`` blocks separated by blank lines."""
    if not file_paths:
        return ""
    blocks: list[str] = []
    for raw in file_paths:
        path = Path(raw).expanduser()
        content = _read_file_content(path) or ""
        blocks.append(f"# From: {path.name}\n\n{content}")
    return "\n\n".join(blocks)


def assemble_instructions(
    instructions: str | Sequence[Path | str] | None,
    context_file_paths: Sequence[Path | str] | None = None,
) -> str:
    """Build the instruction text that precedes the goal on every turn.

    Args:
        instructions: Literal text, or instruction file paths to concatenate
        context_file_paths: Extra files appended after a context separator

    Returns:
        Assembled instructions (possibly empty)
    """
    if instructions is None:
        instructions_content = ""
    elif isinstance(instructions, str):
        instructions_content = instructions
    elif isinstance(instructions, (list, tuple)):
        instructions_content = concatenate_instruction_files(instructions)
    else:
        raise TypeError(
            f"instructions must be a string or a list of paths, got {type(instructions).__name__}"
        )

    context_content = concatenate_instruction_files(context_file_paths)
    if context_content:
        return f"{instructions_content}\n\n{CONTEXT_FILES_SEPARATOR}\n\n{context_content}"
    return instructions_content
