"""SKILL.md skill definitions.

A skill definition is a directory holding a ``SKILL.md`` file plus optional
``scripts/``, ``references/`` and ``assets/`` folders:

    skill-name/
        SKILL.md
        scripts/
        references/
        assets/

``SKILL.md`` starts with YAML frontmatter (``name`` and ``description`` are
required, ``name`` must equal the directory name) followed by markdown. The
``## Parameters`` table and the ``## Examples`` section are parsed; the rest
of the body is documentation.

Definitions are turned into registrable skills by ``DefinitionBackedSkill``,
which exposes the metadata for discovery and composition but never runs
the bundled scripts.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import structlog
import yaml

from agentic_skills.skills.base import (
    SEMVER_PATTERN,
    SKILL_ID_PATTERN,
    BaseSkill,
    SkillMetadata,
    SkillResult,
)
from agentic_skills.skills.context import SkillContext

log = structlog.get_logger(__name__)

SKILL_FILE = "SKILL.md"
SKILL_NAME_PATTERN = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")
MAX_NAME_LENGTH = 64
MAX_DESCRIPTION_LENGTH = 1024
MAX_COMPATIBILITY_LENGTH = 500

_HEADER_TOKENS = {"parameter", "name", "type", "required", "default", "description"}
_REQUIRED_TOKENS = {"yes", "y", "true", "required"}


class SkillDefinitionError(ValueError):
    """A SKILL.md file is missing or does not describe a valid skill."""


@dataclass(frozen=True)
class ParameterInfo:
    """One row of the ``## Parameters`` table."""

    name: str
    type: str
    required: bool
    default: str | None = None
    description: str = ""


@dataclass(frozen=True)
class SkillDefinition:
    """Metadata parsed from a SKILL.md file."""

    skill_id: str
    name: str
    description: str
    version: str = "1.0.0"
    author: str = ""
    tags: frozenset[str] = field(default_factory=frozenset)
    dependencies: tuple[str, ...] = ()
    parameters: Mapping[str, ParameterInfo] = field(default_factory=dict)
    examples: tuple[str, ...] = ()
    scripts_path: Path | None = None
    references_path: Path | None = None
    assets_path: Path | None = None
    skill_dir: Path | None = None
    allowed_tools: frozenset[str] = field(default_factory=frozenset)
    license: str | None = None
    compatibility: str | None = None
    metadata: Mapping[str, str] = field(default_factory=dict)

    @property
    def root(self) -> Path | None:
        """Skill directory, or None for a definition parsed from memory."""
        if self.skill_dir is not None:
            return self.skill_dir
        for path in (self.scripts_path, self.references_path, self.assets_path):
            if path is not None:
                return path.parent
        return None

    @property
    def required_parameters(self) -> tuple[str, ...]:
        return tuple(name for name, info in self.parameters.items() if info.required)


class SkillDefinitionLoader:
    """Reads skill definitions from ``<skills_dir>/<skill-name>/SKILL.md``."""

    def load_from_directory(self, skills_dir: Path | str) -> list[SkillDefinition]:
        """Load every valid definition under ``skills_dir``.

        Invalid definitions are logged and skipped. Results are sorted by
        skill id.
        """
        root = Path(skills_dir)
        if not root.is_dir():
            log.warning("definitions.directory_not_found", path=str(root))
            return []

        definitions: list[SkillDefinition] = []
        for skill_dir in sorted(p for p in root.iterdir() if p.is_dir()):
            try:
                definition = self.load_skill(skill_dir)
            except (OSError, SkillDefinitionError) as exc:
                log.warning("definitions.load_failed", directory=skill_dir.name, error=str(exc))
                continue
            definitions.append(definition)
            log.info("definitions.loaded", skill_id=definition.skill_id)

        return definitions

    def load_skill(self, skill_dir: Path) -> SkillDefinition:
        """Load the definition of one skill directory.

        Raises:
            SkillDefinitionError: If SKILL.md is missing or invalid
        """
        skill_file = skill_dir / SKILL_FILE
        if not skill_file.is_file():
            raise SkillDefinitionError(f"{SKILL_FILE} not found in {skill_dir.name}")

        definition = self.parse(skill_file.read_text(encoding="utf-8"), skill_dir.name)
        return _with_paths(definition, skill_dir)

    def parse(self, content: str, directory_name: str | None = None) -> SkillDefinition:
        """Parse SKILL.md content.

        Args:
            content: Full file content
            directory_name: Name of the directory holding the file; when
                given, the skill name must match it

        Raises:
            SkillDefinitionError: If the frontmatter is missing or invalid
        """
        frontmatter, body = _split_frontmatter(content)

        name = _as_str(frontmatter.get("name"))
        description = _as_str(frontmatter.get("description"))
        if not name:
            raise SkillDefinitionError("Skill name is required in SKILL.md")
        if not description:
            raise SkillDefinitionError("Skill description is required in SKILL.md")
        if len(description) > MAX_DESCRIPTION_LENGTH:
            raise SkillDefinitionError(
                f"Skill description length must be 1..{MAX_DESCRIPTION_LENGTH}, "
                f"actual={len(description)}"
            )
        _validate_skill_name(name)
        if directory_name and name != directory_name:
            raise SkillDefinitionError(
                f"Skill name must match directory name. name='{name}', dir='{directory_name}'"
            )

        compatibility = _as_str(frontmatter.get("compatibility")) or None
        if compatibility and len(compatibility) > MAX_COMPATIBILITY_LENGTH:
            raise SkillDefinitionError(
                f"Skill compatibility length must be <= {MAX_COMPATIBILITY_LENGTH}, "
                f"actual={len(compatibility)}"
            )

        extra = frontmatter.get("metadata")
        metadata = (
            {str(k): str(v) for k, v in extra.items() if k is not None and v is not None}
            if isinstance(extra, Mapping)
            else {}
        )
        # tags and dependencies may sit at the top level or under metadata
        nested = extra if isinstance(extra, Mapping) else {}
        version = _as_str(frontmatter.get("version")) or metadata.get("version", "1.0.0")
        if not SEMVER_PATTERN.match(version):
            raise SkillDefinitionError(
                f"Skill version {version!r} must follow semantic versioning (e.g. 1.0.0)"
            )
        dependencies = _as_list(frontmatter.get("dependencies", nested.get("dependencies")))
        for dependency in dependencies:
            if dependency == name or not SKILL_ID_PATTERN.match(dependency):
                raise SkillDefinitionError(f"Invalid dependency '{dependency}' for skill '{name}'")
        parameters, examples = _parse_sections(body)

        return SkillDefinition(
            skill_id=name,
            name=name,
            description=description,
            version=version,
            author=_as_str(frontmatter.get("author")) or metadata.get("author", ""),
            tags=frozenset(_as_list(frontmatter.get("tags", nested.get("tags")))),
            dependencies=tuple(dependencies),
            parameters=parameters,
            examples=tuple(examples),
            allowed_tools=frozenset(_as_str(frontmatter.get("allowed-tools")).split()),
            license=_as_str(frontmatter.get("license")) or None,
            compatibility=compatibility,
            metadata=metadata,
        )

    @staticmethod
    def list_files(folder: Path | None) -> list[Path]:
        """Return the regular files directly inside ``folder``, sorted."""
        if folder is None or not folder.is_dir():
            return []
        return sorted(p for p in folder.iterdir() if p.is_file())


def resolve_in_skill_root(skill_root: Path, relative_path: str) -> Path:
    """Resolve ``relative_path`` inside ``skill_root``.

    Raises:
        ValueError: If the path is blank, absolute, a URL, contains '..'
            or resolves outside the root
    """
    if not relative_path or not relative_path.strip():
        raise ValueError("relative_path must not be blank")

    normalized = relative_path.replace("\\", "/")
    if normalized.startswith("/") or re.match(r"^[A-Za-z]:", normalized):
        raise ValueError(f"relative_path must be relative: {relative_path}")
    if "://" in normalized:
        raise ValueError(f"relative_path must be a file path, not URL: {relative_path}")
    if ".." in normalized.split("/"):
        raise ValueError(f"relative_path must not contain '..': {relative_path}")

    root = skill_root.resolve()
    resolved = (root / normalized).resolve()
    if not resolved.is_relative_to(root):
        raise ValueError(f"relative_path must not escape skill root: {relative_path}")
    return resolved


def read_skill_md(definition: SkillDefinition) -> str:
    """Return the SKILL.md text behind ``definition``.

    Empty for definitions without a directory. Read errors are logged and
    also give an empty string.
    """
    root = definition.root
    if root is None:
        return ""
    try:
        return resolve_in_skill_root(root, SKILL_FILE).read_text(encoding="utf-8")
    except (OSError, ValueError) as exc:
        log.warning("definitions.skill_md_unreadable", skill_id=definition.skill_id, error=str(exc))
        return ""


class DefinitionBackedSkill(BaseSkill):
    """A skill built directly from a SKILL.md definition.

    Registers the definition's metadata and dependencies so discovery and
    composition work. Executing it returns a description of the definition;
    bundled scripts are not run.
    """

    def __init__(self, definition: SkillDefinition, origin: str) -> None:
        self._definition = definition
        self._origin = origin
        self._metadata = SkillMetadata(
            skill_id=definition.skill_id,
            name=definition.metadata.get("displayName", definition.name),
            version=definition.version,
            description=definition.description,
            author=definition.author,
            dependencies=frozenset(definition.dependencies),
            tags=definition.tags,
            required_params=definition.required_parameters,
        )

    @property
    def metadata(self) -> SkillMetadata:
        return self._metadata

    @property
    def definition(self) -> SkillDefinition:
        return self._definition

    @property
    def origin(self) -> str:
        return self._origin

    async def execute(self, context: SkillContext, params: dict[str, Any]) -> SkillResult:
        definition = self._definition
        log.debug(
            "definitions.execute",
            skill_id=definition.skill_id,
            origin=self._origin,
            param_keys=sorted(params),
        )
        return SkillResult.succeeded(
            {
                "skillId": definition.skill_id,
                "name": definition.name,
                "version": definition.version,
                "origin": self._origin,
                "scriptsPath": _path_str(definition.scripts_path),
                "referencesPath": _path_str(definition.references_path),
                "assetsPath": _path_str(definition.assets_path),
                "parameters": list(definition.parameters),
                "examples": list(definition.examples),
            },
            message=(
                f"Skill '{definition.skill_id}' is loaded from {self._origin} "
                "(execution not implemented)"
            ),
        )


# ---------------------------------------------------------------------- #
# Parsing helpers
# ---------------------------------------------------------------------- #


def _split_frontmatter(content: str) -> tuple[dict[str, Any], str]:
    lines = content.lstrip().splitlines(keepends=True)
    if not lines or lines[0].strip() != "---":
        raise SkillDefinitionError("SKILL.md must start with YAML frontmatter")

    for idx in range(1, len(lines)):
        if lines[idx].strip() == "---":
            break
    else:
        raise SkillDefinitionError("SKILL.md frontmatter is not closed")

    try:
        loaded = yaml.safe_load("".join(lines[1:idx])) or {}
    except yaml.YAMLError as exc:
        raise SkillDefinitionError(f"Invalid YAML frontmatter: {exc}") from exc
    if not isinstance(loaded, dict):
        raise SkillDefinitionError("Invalid YAML frontmatter: expected mapping")
    return {str(k): v for k, v in loaded.items() if k is not None}, "".join(lines[idx + 1 :])


def _validate_skill_name(name: str) -> None:
    if len(name) > MAX_NAME_LENGTH:
        raise SkillDefinitionError(
            f"Skill name length must be 1..{MAX_NAME_LENGTH}, actual={len(name)}"
        )
    if not SKILL_NAME_PATTERN.match(name):
        raise SkillDefinitionError(
            f"Invalid skill name '{name}'. Only lowercase letters, digits and single "
            "hyphens are allowed."
        )


def _parse_sections(body: str) -> tuple[dict[str, ParameterInfo], list[str]]:
    parameters: dict[str, ParameterInfo] = {}
    examples: list[str] = []
    section: str | None = None
    current: list[str] = []

    def flush() -> None:
        text = "".join(current).strip()
        if text:
            examples.append(text)
        current.clear()

    for line in body.splitlines(keepends=True):
        stripped = line.strip()
        if stripped.startswith("##") and not stripped.startswith("###"):
            if section == "examples":
                flush()
            heading = stripped.lstrip("#").strip().lower()
            if heading.startswith("parameters"):
                section = "parameters"
            elif heading in ("examples", "usage examples"):
                section = "examples"
            else:
                section = None
            continue

        if section == "parameters" and stripped.startswith("|"):
            param = _parse_parameter_row(stripped)
            if param is not None:
                parameters[param.name] = param
        elif section == "examples":
            if stripped.startswith("###"):
                flush()
                current.append(line)
            elif current or stripped:
                current.append(line)

    if section == "examples":
        flush()
    return parameters, examples


def _parse_parameter_row(row: str) -> ParameterInfo | None:
    """Parse ``| name | type | required | default | description |``.

    The default column may be omitted. Header and separator rows give None.
    """
    cells = [cell.strip() for cell in row.split("|") if cell.strip()]
    if len(cells) < 4:
        return None
    if cells[0].lower() in _HEADER_TOKENS and cells[1].lower() in _HEADER_TOKENS:
        return None
    if all(set(cell) <= {"-", ":"} for cell in cells):
        return None

    name = cells[0].strip("`")
    if not name:
        return None
    if len(cells) >= 5:
        default_raw, description = cells[3], " | ".join(cells[4:])
    else:
        default_raw, description = "", " | ".join(cells[3:])
    default = default_raw.strip("`").strip()

    return ParameterInfo(
        name=name,
        type=cells[1].strip("`"),
        required=cells[2].strip("`").lower() in _REQUIRED_TOKENS,
        default=default if default and default.lower() != "none" else None,
        description=description.strip("`").strip(),
    )


def _with_paths(definition: SkillDefinition, skill_dir: Path) -> SkillDefinition:
    def existing(name: str) -> Path | None:
        path = skill_dir / name
        return path if path.exists() else None

    return replace(
        definition,
        skill_dir=skill_dir,
        scripts_path=existing("scripts"),
        references_path=existing("references"),
        assets_path=existing("assets"),
    )


def _as_str(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _as_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [item for item in re.split(r"[,\s]+", value) if item]
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if item is not None and str(item).strip()]
    return []


def _path_str(path: Path | None) -> str | None:
    return str(path) if path is not None else None
