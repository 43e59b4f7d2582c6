"""
Configuration loaders for trackdown.

Project configuration lives in .ai-trackdown/config.yaml at the project root.
Missing keys fall back to defaults; a few values can be overridden from the
environment (ATD_TASKS_DIR, ATD_DEFAULT_ASSIGNEE, ATD_AUTO_TIMESTAMPS).
"""

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path

import yaml

from trackdown.lib import validate
from trackdown.lib.errors import NotFoundError, SchemaError
from trackdown.lib.fileio import atomic_write_text
from trackdown.lib.types import ItemKind

logger = logging.getLogger(__name__)

CONFIG_DIR = ".ai-trackdown"
CONFIG_FILE = "config.yaml"
COUNTERS_FILE = "counters.json"
INDEX_FILE = ".ai-trackdown-index"
DEPENDENCIES_FILE = "dependencies.json"


@dataclass
class StructureConfig:
    """Directory names, relative to the tasks root."""
    epics_dir: str = "epics"
    issues_dir: str = "issues"
    tasks_dir: str = "tasks"
    prs_dir: str = "prs"
    templates_dir: str = "templates"


@dataclass
class NamingConventions:
    """Id prefixes and file extension. Used for formatting only."""
    epic_prefix: str = "EP"
    issue_prefix: str = "ISS"
    task_prefix: str = "TSK"
    pr_prefix: str = "PR"
    file_extension: str = ".md"


@dataclass
class AutomationConfig:
    auto_update_timestamps: bool = True
    auto_sync_status: bool = True


@dataclass
class TrackdownConfig:
    """Project-level configuration from .ai-trackdown/config.yaml"""
    name: str
    project_root: Path
    version: str = "1.0.0"
    description: str = ""
    tasks_directory: str = "tasks"  # Relative to project_root
    default_assignee: str = "unassigned"
    structure: StructureConfig = field(default_factory=StructureConfig)
    naming_conventions: NamingConventions = field(default_factory=NamingConventions)
    automation: AutomationConfig = field(default_factory=AutomationConfig)

    @property
    def config_dir(self) -> Path:
        return self.project_root / CONFIG_DIR

    @property
    def config_path(self) -> Path:
        return self.config_dir / CONFIG_FILE

    @property
    def tasks_root(self) -> Path:
        return self.project_root / self.tasks_directory

    @property
    def index_path(self) -> Path:
        return self.tasks_root / INDEX_FILE

    @property
    def counters_path(self) -> Path:
        return self.config_dir / COUNTERS_FILE

    @property
    def dependencies_path(self) -> Path:
        return self.dir_for(ItemKind.PR) / DEPENDENCIES_FILE

    @property
    def templates_dir(self) -> Path:
        return self.tasks_root / self.structure.templates_dir

    def dir_for(self, kind: ItemKind) -> Path:
        """Absolute directory holding items of the given kind."""
        names = {
            ItemKind.EPIC: self.structure.epics_dir,
            ItemKind.ISSUE: self.structure.issues_dir,
            ItemKind.TASK: self.structure.tasks_dir,
            ItemKind.PR: self.structure.prs_dir,
        }
        return self.tasks_root / names[kind]

    def prefix_for(self, kind: ItemKind) -> str:
        nc = self.naming_conventions
        return {
            ItemKind.EPIC: nc.epic_prefix,
            ItemKind.ISSUE: nc.issue_prefix,
            ItemKind.TASK: nc.task_prefix,
            ItemKind.PR: nc.pr_prefix,
        }[kind]

    def to_dict(self) -> dict:
        """Serializable form, as written to config.yaml."""
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "tasks_directory": self.tasks_directory,
            "default_assignee": self.default_assignee,
            "structure": asdict(self.structure),
            "naming_conventions": asdict(self.naming_conventions),
            "automation": asdict(self.automation),
        }


def _from_dict(data: dict, project_root: Path) -> TrackdownConfig:
    """Build a config from parsed YAML, filling defaults for missing keys."""
    return TrackdownConfig(
        name=data.get("name") or project_root.name,
        project_root=project_root,
        version=str(data.get("version", "1.0.0")),
        description=data.get("description", ""),
        tasks_directory=data.get("tasks_directory", "tasks"),
        default_assignee=data.get("default_assignee", "unassigned"),
        structure=StructureConfig(**data.get("structure", {})),
        naming_conventions=NamingConventions(**data.get("naming_conventions", {})),
        automation=AutomationConfig(**data.get("automation", {})),
    )


def _apply_env_overrides(config: TrackdownConfig) -> TrackdownConfig:
    """Apply ATD_* environment overrides in place."""
    tasks_dir = os.environ.get("ATD_TASKS_DIR")
    if tasks_dir:
        config.tasks_directory = tasks_dir

    assignee = os.environ.get("ATD_DEFAULT_ASSIGNEE")
    if assignee:
        config.default_assignee = assignee

    if os.environ.get("ATD_AUTO_TIMESTAMPS", "").lower() == "false":
        config.automation.auto_update_timestamps = False

    return config


def load_config(project_root: Path) -> TrackdownConfig:
    """Load .ai-trackdown/config.yaml and return TrackdownConfig.

    Raises:
        NotFoundError: If the project has no config file
        SchemaError: If the file is not valid YAML or fails validation
    """
    project_root = Path(project_root)
    path = project_root / CONFIG_DIR / CONFIG_FILE
    if not path.exists():
        raise NotFoundError(str(path), "config", "run 'atd init' first")

    try:
        data = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as e:
        raise SchemaError("config", f"Invalid YAML in {path}: {e}") from None

    validate.validate(data, "config")
    return _apply_env_overrides(_from_dict(data, project_root))


def save_config(config: TrackdownConfig) -> None:
    """Validate and write config.yaml."""
    data = config.to_dict()
    validate.validate_before_write(data, "config", config.config_path)
    atomic_write_text(config.config_path, yaml.safe_dump(data, sort_keys=False, indent=2))


def default_config(project_root: Path, name: str = None, **overrides) -> TrackdownConfig:
    """Create a config with defaults, without touching disk."""
    project_root = Path(project_root)
    config = TrackdownConfig(
        name=name or project_root.name,
        project_root=project_root,
        description=f"AI-Trackdown project: {name or project_root.name}",
    )
    for key, value in overrides.items():
        setattr(config, key, value)
    return config


def init_project(project_root: Path, name: str = None, **overrides) -> TrackdownConfig:
    """Create config.yaml and the directory structure for a new project.

    Existing item directories are left untouched.
    """
    config = default_config(project_root, name, **overrides)
    config.config_dir.mkdir(parents=True, exist_ok=True)
    for kind in ItemKind:
        config.dir_for(kind).mkdir(parents=True, exist_ok=True)
    config.templates_dir.mkdir(parents=True, exist_ok=True)
    save_config(config)
    logger.info(f"Initialized trackdown project '{config.name}' at {config.project_root}")
    return config


def find_project_root(start: Path = None) -> Path | None:
    """Walk up from start until a directory containing .ai-trackdown/config.yaml is found."""
    current = Path(start or Path.cwd()).resolve()
    for candidate in [current, *current.parents]:
        if (candidate / CONFIG_DIR / CONFIG_FILE).exists():
            return candidate
    return None
