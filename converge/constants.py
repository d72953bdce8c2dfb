"""Global constants for the convergence engine."""

import os
from pathlib import Path

# Directory paths
PACKAGE_ROOT = Path(__file__).resolve().parent          # /converge
PROJECT_ROOT = PACKAGE_ROOT.parent

# User configuration root (supports CONVERGE_HOME env var, defaults to ~/.converge)
_converge_home_env = os.getenv("CONVERGE_HOME", "")
if _converge_home_env:
    CONVERGE_HOME = Path(_converge_home_env).expanduser().resolve()
else:
    CONVERGE_HOME = Path.home() / ".converge"

MODULE_DEFINITIONS_DIR = PACKAGE_ROOT / "definitions"   # built-in topic definitions
USER_DEFINITIONS_DIR = CONVERGE_HOME / "config"         # user-level topic overrides

BUNDLED_PLUGINS_DIR = PROJECT_ROOT / "plugins" / "bundled"
INSTALLED_PLUGINS_DIR = CONVERGE_HOME / "plugins"
PLUGIN_CONFIG_FILE = INSTALLED_PLUGINS_DIR / "config.json"

# Configuration bridge cache lifetime (seconds)
CACHE_TTL_SECONDS = float(os.getenv("CONVERGE_CACHE_TTL", "300"))

# Upper bound for the aggregate's parallel worker pool
MAX_PARALLEL_WORKERS = int(os.getenv("CONVERGE_MAX_WORKERS", "4"))

# Load plugins as soon as they are registered
AUTO_LOAD_PLUGINS = os.getenv("CONVERGE_AUTO_LOAD", "true").lower() in ("1", "true", "yes", "on")

# Recommendation result cap
MAX_RECOMMENDATIONS = 1000
