"""Plugin manifest model - describes a plugin's metadata and dependencies."""

import re
from typing import Any, Dict, Iterable, List

from pydantic import BaseModel, Field

SEMVER_PATTERN = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?"
    r"(?:\+[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?$"
)


class PluginManifest(BaseModel):
    """Plugin manifest, loaded from plugin.json or built in code.

    Field types are enforced on construction; semantic checks (non-empty name,
    semantic version, known category) are done by ``validate_manifest`` so a
    forced registration can bypass them.
    """

    name: str = Field(..., description="Unique plugin name (kebab-case)")
    version: str = Field(default="1.0.0", description="Semantic version")
    author: str = Field(default="", description="Plugin author")
    description: str = Field(default="", description="Plugin description")
    category: str = Field(default="configuration", description="Plugin category")
    dependencies: List[str] = Field(default_factory=list, description="Names of required plugins")
    supported_platforms: List[str] = Field(default_factory=lambda: ["Windows"])
    entry_point: str = Field(
        default="plugin:register",
        description="Python module:function path relative to plugin directory",
    )
    enabled: bool = Field(default=True, description="Initial enabled flag")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    settings: Dict[str, Any] = Field(
        default_factory=dict,
        description="Settings the plugin reads from its config, with their defaults",
    )

    def validate_manifest(self, known_categories: Iterable[str]) -> List[str]:
        """Return a list of problems; empty when the manifest is valid."""
        problems = []
        if not self.name or not self.name.strip():
            problems.append("Plugin name cannot be empty")
        if not SEMVER_PATTERN.match(self.version or ""):
            problems.append(f"Invalid version '{self.version}', expected semantic version (e.g. 1.2.0)")
        known = set(known_categories)
        if self.category not in known:
            problems.append(
                f"Unknown category '{self.category}'. Known: {', '.join(sorted(known))}"
            )
        if self.name in self.dependencies:
            problems.append("Plugin cannot depend on itself")
        if ":" not in self.entry_point:
            problems.append(f"Invalid entry point '{self.entry_point}', expected 'module:function'")
        return problems
