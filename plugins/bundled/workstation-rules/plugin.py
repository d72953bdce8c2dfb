"""Workstation recommendation rules plugin entry point."""

import logging
from typing import Any, Dict, List

from converge.plugins.base import RecommendationPlugin
from converge.plugins.manifest import PluginManifest

logger = logging.getLogger(__name__)

DEVELOPER_PACKAGES = {
    "Git.Git": "Git",
    "Microsoft.VisualStudioCode": "Visual Studio Code",
    "Microsoft.WindowsTerminal": "Windows Terminal",
}

DEFAULT_LOW_MEMORY_GB = 8


def developer_tools(profile: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Suggest core developer packages that are not installed yet."""
    if not profile.get("is_developer"):
        return []
    installed = set(profile.get("installed_packages") or [])
    recommendations = []
    for package_id, title in DEVELOPER_PACKAGES.items():
        if package_id in installed:
            continue
        recommendations.append({
            "title": f"Install {title}",
            "category": "Development",
            "priority": "High",
            "description": f"{title} is part of the standard developer toolset",
            "score": 0.9,
            "auto_apply": True,
            "item": {
                "name": package_id,
                "type": "Package",
                "properties": {"PackageId": package_id, "Source": "winget"},
            },
        })
    return recommendations


def wsl(profile: Dict[str, Any]) -> List[Dict[str, Any]]:
    features = profile.get("features") or {}
    if not profile.get("is_developer") or features.get("Microsoft-Windows-Subsystem-Linux") == "Enabled":
        return []
    if not profile.get("virtualization_enabled"):
        return [{
            "title": "Enable Windows Subsystem for Linux",
            "category": "Development",
            "priority": "Low",
            "description": "WSL requires hardware virtualization, which is disabled in firmware",
            "score": 0.3,
        }]
    return [{
        "title": "Enable Windows Subsystem for Linux",
        "category": "Development",
        "priority": "Medium",
        "description": "Run Linux tooling side by side with Windows",
        "score": 0.75,
        "auto_apply": False,
        "item": {
            "name": "WSL",
            "type": "Feature",
            "properties": {"FeatureName": "Microsoft-Windows-Subsystem-Linux", "State": "Enabled"},
        },
    }]


def git_alias(profile: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Add a short git alias to the shell profile (served by shell-profile)."""
    profile_path = profile.get("shell_profile_path")
    if not profile_path or not profile.get("is_developer"):
        return []
    return [{
        "title": "Add git shortcut to shell profile",
        "category": "Productivity",
        "priority": "Low",
        "description": "Defines 'g' as an alias for git",
        "score": 0.6,
        "auto_apply": True,
        "item": {
            "name": "git-alias",
            "type": "ProfileLine",
            "properties": {"Path": profile_path, "Line": "Set-Alias -Name g -Value git"},
        },
    }]


def dark_theme(profile: Dict[str, Any]) -> List[Dict[str, Any]]:
    if not profile.get("prefers_dark_theme"):
        return []
    return [{
        "title": "Use dark app theme",
        "category": "Appearance",
        "priority": "Low",
        "description": "Switch apps to the dark color mode",
        "score": 0.5,
        "auto_apply": True,
        "item": {
            "name": "AppsUseLightTheme",
            "type": "Registry",
            "properties": {
                "Path": r"HKCU:\Software\Microsoft\Windows\CurrentVersion\Themes\Personalize",
                "ValueName": "AppsUseLightTheme",
                "Value": 0,
                "Kind": "DWord",
            },
        },
    }]


def make_memory_rule(threshold_gb: float):
    def low_memory(profile: Dict[str, Any]) -> List[Dict[str, Any]]:
        memory_gb = profile.get("memory_gb")
        if memory_gb is None or memory_gb >= threshold_gb:
            return []
        return [{
            "title": "Reduce startup applications",
            "category": "Performance",
            "priority": "High" if memory_gb < threshold_gb / 2 else "Medium",
            "description": f"Only {memory_gb} GB of memory available; trim background apps",
            "score": 0.8,
        }]
    return low_memory


def memory_integrity(profile: Dict[str, Any]) -> List[Dict[str, Any]]:
    features = profile.get("features") or {}
    if not profile.get("virtualization_enabled") or features.get("HypervisorEnforcedCodeIntegrity") == "Enabled":
        return []
    return [{
        "title": "Turn on memory integrity",
        "category": "Security",
        "priority": "Critical",
        "description": "Hypervisor-protected code integrity blocks kernel-level tampering",
        "score": 0.95,
        "item": {
            "name": "HVCI",
            "type": "Registry",
            "properties": {
                "Path": r"HKLM:\SYSTEM\CurrentControlSet\Control\DeviceGuard\Scenarios\HypervisorEnforcedCodeIntegrity",
                "ValueName": "Enabled",
                "Value": 1,
                "Kind": "DWord",
            },
        },
    }]


class WorkstationRulesPlugin(RecommendationPlugin):
    """Recommendation rules for developer workstations."""

    def initialize(self) -> None:
        threshold = float(self.config.get("low_memory_gb", DEFAULT_LOW_MEMORY_GB))
        self.register_rule("Development", "developer-tools", developer_tools)
        self.register_rule("Development", "wsl", wsl)
        self.register_rule("Productivity", "git-alias", git_alias)
        self.register_rule("Appearance", "dark-theme", dark_theme)
        self.register_rule("Performance", "low-memory", make_memory_rule(threshold))
        self.register_rule("Security", "memory-integrity", memory_integrity)

    def cleanup(self) -> None:
        self._rules.clear()


def register(manifest: PluginManifest) -> WorkstationRulesPlugin:
    """Plugin entry point - called by PluginLifecycle.instantiate()."""
    plugin = WorkstationRulesPlugin(manifest)
    logger.info(f"Workstation rules plugin registered: {manifest.name} v{manifest.version}")
    return plugin
