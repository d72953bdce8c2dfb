"""Shell profile plugin entry point."""

import logging
import threading
from pathlib import Path
from typing import Any, Dict

from converge.errors import OperationFailure
from converge.plugins.base import ConfigurationPlugin
from converge.plugins.manifest import PluginManifest

logger = logging.getLogger(__name__)

ITEM_TYPE = "ProfileLine"


class ShellProfilePlugin(ConfigurationPlugin):
    """Serves ``ProfileLine`` items: one line that must be present in a profile script.

    Item properties:
        Path: Profile file path (``~`` is expanded)
        Line: Exact line that must be present
    """

    def __init__(self, manifest: PluginManifest):
        super().__init__(manifest)
        self._write_lock = threading.Lock()
        self.encoding = "utf-8"

    def initialize(self) -> None:
        self.encoding = self.config.get("encoding", "utf-8")
        self.register_handler(ITEM_TYPE, self.handle)
        self.get_logger().info(f"Shell profile plugin ready (encoding={self.encoding})")

    def cleanup(self) -> None:
        self._handlers.clear()

    def handle(self, item, operation: str) -> Any:
        path, line = self._target(item)
        if operation == "test":
            return line in self._read_lines(path)
        if operation == "apply":
            self._append_line(path, line)
            return None
        if operation == "state":
            return self._state(path, line)
        raise OperationFailure(f"Unsupported operation '{operation}' for {ITEM_TYPE}")

    def _target(self, item):
        path = item.get_property("Path")
        line = item.get_property("Line")
        if not path or line is None:
            raise OperationFailure(
                f"{ITEM_TYPE} item '{item.name}' requires Path and Line properties",
                critical=item.critical,
            )
        return Path(str(path)).expanduser(), str(line).rstrip("\r\n")

    def _read_lines(self, path: Path):
        if not path.is_file():
            return []
        with open(path, "r", encoding=self.encoding) as f:
            return [existing.rstrip("\r\n") for existing in f]

    def _append_line(self, path: Path, line: str) -> None:
        with self._write_lock:
            path.parent.mkdir(parents=True, exist_ok=True)
            needs_newline = path.is_file() and path.stat().st_size > 0 and not _ends_with_newline(path)
            with open(path, "a", encoding=self.encoding) as f:
                if needs_newline:
                    f.write("\n")
                f.write(line + "\n")
        logger.info(f"Appended line to {path}")

    def _state(self, path: Path, line: str) -> Dict[str, Any]:
        lines = self._read_lines(path)
        return {
            "Path": str(path),
            "Exists": path.is_file(),
            "LineCount": len(lines),
            "Present": line in lines,
        }


def _ends_with_newline(path: Path) -> bool:
    with open(path, "rb") as f:
        f.seek(-1, 2)
        return f.read(1) == b"\n"


def register(manifest: PluginManifest) -> ShellProfilePlugin:
    """Plugin entry point - called by PluginLifecycle.instantiate().

    Args:
        manifest: Manifest loaded from plugin.json

    Returns:
        ShellProfilePlugin instance
    """
    plugin = ShellProfilePlugin(manifest)
    logger.info(f"Shell profile plugin registered: {manifest.name} v{manifest.version}")
    return plugin
