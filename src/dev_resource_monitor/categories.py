"""Application category catalog.

A catalog is an ordered list of AppCategory. Order matters: the aggregator
assigns each process to the first enabled category (and the first app in
it) whose patterns match. Categories and app definitions are immutable;
edits produce a new list that replaces the old one wholesale.
"""

import json
import re
import uuid
from dataclasses import dataclass, field, replace

import structlog

log = structlog.get_logger()

OTHER_CATEGORY_ID = "other"


class ProtectedCategoryError(ValueError):
    """Raised when trying to delete a built-in category."""


@dataclass(frozen=True)
class AppDefinition:
    """One matchable application and the process-name patterns that identify it.

    Patterns are compiled once. A regex that fails to compile, and an empty
    pattern, never match anything.
    """

    name: str
    process_names: tuple[str, ...]
    use_regex: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    _regexes: tuple[re.Pattern | None, ...] = field(
        init=False, repr=False, compare=False, default=()
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "process_names", tuple(self.process_names))
        if self.use_regex:
            object.__setattr__(
                self, "_regexes", tuple(_compile(p) for p in self.process_names)
            )

    def matches(self, text: str) -> bool:
        """Return True if any pattern matches text (case-insensitive)."""
        if self.use_regex:
            return any(rx is not None and rx.search(text) for rx in self._regexes)
        folded = text.casefold()
        return any(p and p.casefold() in folded for p in self.process_names)

    def to_dict(self) -> dict:
        """Serialize to a dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "process_names": list(self.process_names),
            "use_regex": self.use_regex,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AppDefinition":
        """Deserialize from a dictionary.

        Raises:
            ValueError: If process_names is not a list of strings.
        """
        patterns = data["process_names"]
        if not isinstance(patterns, list) or not all(isinstance(p, str) for p in patterns):
            raise ValueError(f"process_names must be a list of strings, got {patterns!r}")
        return cls(
            id=data["id"],
            name=data["name"],
            process_names=tuple(patterns),
            use_regex=bool(data.get("use_regex", False)),
        )


def _compile(pattern: str) -> re.Pattern | None:
    """Compile a pattern, returning None when it is empty or invalid."""
    if not pattern:
        return None
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        log.warning("invalid_app_pattern", pattern=pattern, error=str(e))
        return None


@dataclass(frozen=True)
class AppCategory:
    """Named, colored group of applications."""

    id: str
    name: str
    color: str  # Hex, e.g. "#007AFF"
    apps: tuple[AppDefinition, ...] = ()
    is_built_in: bool = False
    is_enabled: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "apps", tuple(self.apps))

    def to_dict(self) -> dict:
        """Serialize to a dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "apps": [app.to_dict() for app in self.apps],
            "is_built_in": self.is_built_in,
            "is_enabled": self.is_enabled,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AppCategory":
        """Deserialize from a dictionary."""
        return cls(
            id=data["id"],
            name=data["name"],
            color=data["color"],
            apps=tuple(AppDefinition.from_dict(a) for a in data.get("apps", [])),
            is_built_in=bool(data.get("is_built_in", False)),
            is_enabled=bool(data.get("is_enabled", True)),
        )


def categories_to_json(categories: list[AppCategory]) -> str:
    """Encode a full catalog as a JSON container object."""
    return json.dumps({"categories": [c.to_dict() for c in categories]})


def categories_from_json(payload: str) -> list[AppCategory]:
    """Decode a catalog written by categories_to_json.

    Raises:
        ValueError: If the payload is not valid JSON or is missing fields.
    """
    try:
        data = json.loads(payload)
        return [AppCategory.from_dict(c) for c in data["categories"]]
    except (KeyError, TypeError) as e:
        raise ValueError(f"Malformed category payload: {e}") from e


# --- Catalog edits (each returns a new list) ---


def add_category(categories: list[AppCategory], category: AppCategory) -> list[AppCategory]:
    """Insert a category just before "other" so the catch-all stays last."""
    if any(c.id == category.id for c in categories):
        raise ValueError(f"Category {category.id!r} already exists")
    result = list(categories)
    for i, existing in enumerate(result):
        if existing.id == OTHER_CATEGORY_ID:
            result.insert(i, category)
            return result
    result.append(category)
    return result


def remove_category(categories: list[AppCategory], category_id: str) -> list[AppCategory]:
    """Remove a user-defined category.

    Raises:
        ProtectedCategoryError: If the category is built in.
        KeyError: If no category has this id.
    """
    for c in categories:
        if c.id == category_id:
            if c.is_built_in:
                raise ProtectedCategoryError(f"Cannot delete built-in category {category_id!r}")
            return [other for other in categories if other.id != category_id]
    raise KeyError(category_id)


def replace_category(categories: list[AppCategory], category: AppCategory) -> list[AppCategory]:
    """Replace the category with the same id, keeping its position."""
    if not any(c.id == category.id for c in categories):
        raise KeyError(category.id)
    return [category if c.id == category.id else c for c in categories]


def set_category_enabled(
    categories: list[AppCategory], category_id: str, enabled: bool
) -> list[AppCategory]:
    """Enable or disable a category by id."""
    for c in categories:
        if c.id == category_id:
            return replace_category(categories, replace(c, is_enabled=enabled))
    raise KeyError(category_id)


def _app(name: str, *process_names: str) -> AppDefinition:
    return AppDefinition(name=name, process_names=process_names)


DEFAULT_CATEGORIES: list[AppCategory] = [
    AppCategory(
        id="ide",
        name="IDEs & Editors",
        color="#007AFF",
        apps=(
            _app("Visual Studio Code", "Electron", "Code Helper", "Code"),
            _app("JetBrains Rider", "rider", "fsnotifier"),
            _app("JetBrains WebStorm", "webstorm"),
            _app("JetBrains IntelliJ", "idea"),
            _app("JetBrains PyCharm", "pycharm"),
            _app("JetBrains GoLand", "goland"),
            _app("JetBrains CLion", "clion"),
            _app("JetBrains DataGrip", "datagrip"),
            _app("Xcode", "Xcode", "XCBBuildService", "SourceKitService", "IBDesignablesAgent"),
            _app("Sublime Text", "Sublime Text", "sublime_text"),
            _app("Neovim", "nvim"),
            _app("Vim", "vim"),
            _app("Cursor", "Cursor", "Cursor Helper"),
            _app("Zed", "Zed", "zed"),
        ),
        is_built_in=True,
    ),
    AppCategory(
        id="containers",
        name="Containers & VMs",
        color="#34C759",
        apps=(
            _app("Docker", "Docker", "com.docker", "docker-proxy", "vpnkit", "Docker Desktop"),
            _app("Podman", "podman", "gvproxy"),
            _app("Colima", "colima", "limactl", "lima"),
            _app("OrbStack", "OrbStack", "orbstack"),
            _app("UTM", "UTM", "QEMU"),
            _app("Parallels", "prl_client_app", "prl_vm_app", "Parallels"),
            _app("VMware Fusion", "vmware", "VMware Fusion"),
        ),
        is_built_in=True,
    ),
    AppCategory(
        id="dev-tools",
        name="Dev Tools",
        color="#FF9500",
        apps=(
            _app("Terminal", "Terminal"),
            _app("iTerm2", "iTerm2", "iTerm"),
            _app("Warp", "Warp"),
            _app("Alacritty", "alacritty"),
            _app("Kitty", "kitty"),
            _app("Git", "git", "git-remote-https", "git-credential"),
            _app("Node.js", "node"),
            _app("Python", "python", "python3", "Python"),
            _app("Ruby", "ruby"),
            _app("Go", "go"),
            _app("Rust", "rustc", "cargo", "rust-analyzer"),
            _app("Java", "java"),
            _app("Kotlin", "kotlin", "kotlinc"),
        ),
        is_built_in=True,
    ),
    AppCategory(
        id="databases",
        name="Databases",
        color="#AF52DE",
        apps=(
            _app("PostgreSQL", "postgres", "psql", "pg_"),
            _app("MySQL", "mysqld", "mysql"),
            _app("MongoDB", "mongod", "mongo", "mongos"),
            _app("Redis", "redis-server", "redis-cli"),
            _app("SQLite", "sqlite3"),
            _app("TablePlus", "TablePlus"),
            _app("DBeaver", "dbeaver"),
            _app("Sequel Pro", "Sequel Pro"),
            _app("Postico", "Postico"),
        ),
        is_built_in=True,
    ),
    AppCategory(
        id="browsers",
        name="Browsers (Dev)",
        color="#5856D6",
        apps=(
            _app("Chrome", "Google Chrome", "Google Chrome Helper", "Chrome"),
            _app("Firefox", "firefox", "Firefox"),
            _app("Safari", "Safari", "com.apple.WebKit"),
            _app("Arc", "Arc", "Arc Helper"),
            _app("Brave", "Brave Browser", "Brave"),
            _app("Edge", "Microsoft Edge", "Edge"),
        ),
        is_built_in=True,
    ),
    AppCategory(
        id="build-tools",
        name="Build & CI",
        color="#FF3B30",
        apps=(
            _app("Gradle", "gradle", "GradleDaemon"),
            _app("Maven", "mvn"),
            _app("Webpack", "webpack"),
            _app("Vite", "vite"),
            _app("esbuild", "esbuild"),
            _app("Turbopack", "turbopack"),
            _app("SWC", "swc"),
            _app("Bun", "bun"),
            _app("npm", "npm"),
            _app("yarn", "yarn"),
            _app("pnpm", "pnpm"),
        ),
        is_built_in=True,
    ),
    AppCategory(
        id="communication",
        name="Communication",
        color="#00C7BE",
        apps=(
            _app("Slack", "Slack", "Slack Helper"),
            _app("Discord", "Discord", "Discord Helper"),
            _app("Zoom", "zoom.us", "Zoom"),
            _app("Microsoft Teams", "Microsoft Teams", "Teams"),
            _app("Messages", "Messages"),
            _app("Mail", "Mail"),
        ),
        is_built_in=True,
    ),
    AppCategory(
        id=OTHER_CATEGORY_ID,
        name="Other/Uncategorized",
        color="#8E8E93",
        apps=(),
        is_built_in=True,
    ),
]
