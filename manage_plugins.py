#!/usr/bin/env python3
"""Plugin management CLI tool."""

import argparse
import json
import sys
from pathlib import Path

# Ensure project root is in path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from converge.constants import BUNDLED_PLUGINS_DIR, INSTALLED_PLUGINS_DIR, PLUGIN_CONFIG_FILE
from converge.errors import ConvergeError
from converge.plugins.config import PluginConfigService
from converge.plugins.manager import PluginManager
from converge.plugins.resolver import find_cycles, resolve_order


def get_config() -> PluginConfigService:
    """Create a PluginConfigService instance."""
    return PluginConfigService(PLUGIN_CONFIG_FILE)


def get_manager(config: PluginConfigService) -> PluginManager:
    """Create a PluginManager with every discovered plugin registered but not loaded.

    Enabled flags are taken from the config file, which is the source of truth
    between runs.
    """
    manager = PluginManager(
        plugin_paths=[(BUNDLED_PLUGINS_DIR, "bundled"), (INSTALLED_PLUGINS_DIR, "installed")],
        auto_load_enabled=False,
        config_service=config,
    )
    discovered = {d.name: d for d in manager.discover_plugins()}
    for name in discovered:
        try:
            order = resolve_order(name, discovered.get)
        except ConvergeError as e:
            print(f"Warning: {e}")
            continue
        for current in order:
            if manager.get_plugin(current) is not None:
                continue
            try:
                result = manager.register_discovered(current)
            except ConvergeError as e:
                print(f"Warning: {e}")
                break
            if not result.success:
                print(f"Warning: {result.error}")
                break

    for plugin in manager.registry.get_all():
        plugin.enabled = config.is_enabled(plugin.name)
    return manager


def print_result(result) -> None:
    if result.success:
        print(result.message)
    else:
        print(f"Error ({result.error_kind.value}): {result.error}")
    for warning in result.warnings:
        print(f"  Warning: {warning}")


def cmd_list(args):
    """List all discovered plugins."""
    config = get_config()
    manager = PluginManager(
        plugin_paths=[(BUNDLED_PLUGINS_DIR, "bundled"), (INSTALLED_PLUGINS_DIR, "installed")],
        config_service=config,
    )
    plugins = manager.discover_plugins()

    if not plugins:
        print("No plugins found.")
        return

    enabled_names = config.get_enabled_list()

    print(f"{'Name':<24} {'Category':<16} {'Source':<10} {'Enabled':<8} {'Version':<10} {'Depends on'}")
    print("-" * 100)

    for p in plugins:
        enabled = "Yes" if p.name in enabled_names else "No"
        print(
            f"{p.name:<24} {p.manifest.category:<16} {p.source:<10} {enabled:<8} "
            f"{p.manifest.version:<10} {', '.join(p.dependencies) or '-'}"
        )


def cmd_info(args):
    """Show detailed plugin information."""
    config = get_config()
    manager = get_manager(config)
    discovered = {d.name: d for d in manager.get_discovered()}

    plugin = discovered.get(args.name)
    if not plugin:
        print(f"Plugin '{args.name}' not found.")
        sys.exit(1)

    info = manager.get_plugin_info(args.name) or {}

    print(f"Plugin: {plugin.name}")
    print(f"  Version:      {plugin.manifest.version}")
    print(f"  Author:       {plugin.manifest.author or '-'}")
    print(f"  Category:     {plugin.manifest.category}")
    print(f"  Description:  {plugin.manifest.description}")
    print(f"  Source:       {plugin.source}")
    print(f"  Path:         {plugin.path}")
    print(f"  Entry Point:  {plugin.manifest.entry_point}")
    print(f"  Platforms:    {', '.join(plugin.manifest.supported_platforms)}")
    print(f"  Dependencies: {', '.join(plugin.dependencies) or '-'}")
    print(f"  Dependents:   {', '.join(info.get('dependents', [])) or '-'}")
    print(f"  Enabled:      {config.is_enabled(plugin.name)}")
    plugin_config = config.get_plugin_config(plugin.name)
    if plugin_config:
        print(f"  Config:       {json.dumps(plugin_config, indent=4, ensure_ascii=False)}")


def cmd_enable(args):
    """Enable a plugin (and optionally its dependencies)."""
    config = get_config()
    manager = get_manager(config)

    result = manager.enable_plugin(args.name, enable_dependencies=args.with_dependencies)
    print_result(result)
    if not result.success:
        sys.exit(1)


def cmd_disable(args):
    """Disable a plugin (and optionally everything depending on it)."""
    config = get_config()
    manager = get_manager(config)

    result = manager.disable_plugin(args.name, disable_dependents=args.with_dependents)
    print_result(result)
    if not result.success:
        sys.exit(1)


def cmd_discover(args):
    """Scan the search paths and show what was found."""
    manager = PluginManager(
        plugin_paths=[(BUNDLED_PLUGINS_DIR, "bundled"), (INSTALLED_PLUGINS_DIR, "installed")],
    )
    for path in args.path or []:
        manager.add_plugin_path(Path(path).resolve(), "external")

    plugins = manager.discover_plugins()
    print(json.dumps([p.to_dict() for p in plugins], indent=2, ensure_ascii=False))


def cmd_doctor(args):
    """Run health checks on the plugin system."""
    issues = []

    # Check directories
    if not BUNDLED_PLUGINS_DIR.exists():
        issues.append(f"Bundled plugins directory missing: {BUNDLED_PLUGINS_DIR}")

    # Check config file
    if PLUGIN_CONFIG_FILE.exists():
        try:
            with open(PLUGIN_CONFIG_FILE, encoding="utf-8") as f:
                json.load(f)
        except json.JSONDecodeError as e:
            issues.append(f"Plugin config file has invalid JSON: {e}")

    config = get_config()
    manager = get_manager(config)
    discovered = manager.get_discovered()
    enabled_names = config.get_enabled_list()

    # Enabled plugins that don't exist
    discovered_names = {p.name for p in discovered}
    for name in enabled_names:
        if name not in discovered_names:
            issues.append(f"Enabled plugin '{name}' not found in any search path")

    # Entry points
    for p in discovered:
        entry_module = p.manifest.entry_point.split(":")[0]
        entry_file = p.path / f"{entry_module}.py"
        if not entry_file.exists():
            issues.append(f"Plugin '{p.name}': entry point file missing: {entry_file}")

    # Dependency graph of everything discovered (registered or not)
    for cycle in find_cycles(discovered):
        issues.append(f"Dependency cycle: {' -> '.join(cycle)}")
    for p in discovered:
        missing = [dep for dep in p.dependencies if dep not in discovered_names]
        if missing:
            issues.append(f"Plugin '{p.name}': missing dependencies ({', '.join(missing)})")

    issues.extend(issue for issue in manager.diagnose() if issue not in issues)

    if issues:
        print(f"Found {len(issues)} issue(s):")
        for i, issue in enumerate(issues, 1):
            print(f"  {i}. {issue}")
        sys.exit(1)
    else:
        print(f"All checks passed. {len(discovered)} plugin(s) found, {len(enabled_names)} enabled.")


def main():
    parser = argparse.ArgumentParser(description="Converge Plugin Manager")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # list
    subparsers.add_parser("list", help="List all plugins")

    # info
    info_parser = subparsers.add_parser("info", help="Show plugin details")
    info_parser.add_argument("name", help="Plugin name")

    # enable
    enable_parser = subparsers.add_parser("enable", help="Enable a plugin")
    enable_parser.add_argument("name", help="Plugin name")
    enable_parser.add_argument(
        "--with-dependencies", action="store_true", help="Also enable the plugins it depends on"
    )

    # disable
    disable_parser = subparsers.add_parser("disable", help="Disable a plugin")
    disable_parser.add_argument("name", help="Plugin name")
    disable_parser.add_argument(
        "--with-dependents", action="store_true", help="Also disable plugins that depend on it"
    )

    # discover
    discover_parser = subparsers.add_parser("discover", help="Scan search paths for plugins")
    discover_parser.add_argument("path", nargs="*", help="Extra directories to scan")

    # doctor
    subparsers.add_parser("doctor", help="Run health checks")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        "list": cmd_list,
        "info": cmd_info,
        "enable": cmd_enable,
        "disable": cmd_disable,
        "discover": cmd_discover,
        "doctor": cmd_doctor,
    }

    commands[args.command](args)


if __name__ == "__main__":
    main()
