"""File watcher plugin for monitoring knowledge-base changes.

Watches configured directories by polling: a background task rescans the
watched trees every `pollInterval` milliseconds, diffs modification-time
snapshots, and buffers raw change notifications. `listen()` turns the
buffer into added/changed/removed events, one per path.

Sensitive locations (credential stores, system directories) are never
watched, whatever the configuration says.

Example:
    config = FileWatcherPluginConfig(
        enabled=True,
        paths=["./knowledge-base"],
        patterns=["**/*.md"],
        ignore_patterns=["**/drafts/**"],
    )
    plugin = FileWatcherPlugin(config)
    await plugin.initialize()
    events = await plugin.listen()
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar, Literal

from autonav.config import FileWatcherPluginConfig
from autonav.constants import PLUGIN_FILE_WATCHER, PLUGIN_VERSION, SENSITIVE_DIRS
from autonav.exceptions import PluginConfigError
from autonav.logging import get_logger
from autonav.plugins.base import (
    ActionResult,
    FileAddedEvent,
    FileChangedEvent,
    FileRemovedEvent,
    FileWatcherClear,
    FileWatcherRefresh,
    Plugin,
    PluginActionBase,
    PluginEventBase,
    PluginHealthStatus,
)

logger = get_logger(__name__)

ChangeKind = Literal["added", "changed", "removed"]

_EVENT_TYPES: dict[str, type[PluginEventBase]] = {
    "added": FileAddedEvent,
    "changed": FileChangedEvent,
    "removed": FileRemovedEvent,
}


# =============================================================================
# PATH FILTERING
# =============================================================================


def _normalize(path: str) -> str:
    return os.path.normpath(os.path.abspath(os.path.expanduser(path)))


def is_sensitive_path(path: str) -> bool:
    """Check whether a path is, or is inside, a sensitive location.

    `~` is expanded on both sides before comparing, and the comparison is
    made on whole path components ("/etc" covers "/etc/ssl" but not
    "/etcetera"). Symlinks are checked through their target as well.

    Args:
        path: Path from configuration.

    Returns:
        True if the path must not be watched.
    """
    candidates = {_normalize(path), os.path.realpath(_normalize(path))}
    for sensitive in SENSITIVE_DIRS:
        root = _normalize(sensitive)
        for candidate in candidates:
            if candidate == root or candidate.startswith(root.rstrip(os.sep) + os.sep):
                return True
    return False


def _translate_glob(pattern: str) -> str:
    """Translate a glob into a regex.

    `*` and `?` stay within one path component, `**` crosses components,
    `**/` also matches zero directories, `[...]` is a character class and
    `{a,b}` an alternation.

    Raises:
        ValueError: On an empty pattern or an unclosed `[` or `{`.
    """
    if not pattern:
        raise ValueError("empty pattern")

    out: list[str] = []
    i, n = 0, len(pattern)
    brace_depth = 0
    while i < n:
        c = pattern[i]
        if c == "*":
            if pattern.startswith("**/", i):
                out.append("(?:.*/)?")
                i += 3
                continue
            if pattern.startswith("**", i):
                out.append(".*")
                i += 2
                continue
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "[":
            end = pattern.find("]", i + 2 if pattern.startswith("[!", i) else i + 1)
            if end == -1:
                raise ValueError(f"unclosed character class in {pattern!r}")
            body = pattern[i + 1 : end]
            if body.startswith("!"):
                body = "^" + body[1:]
            out.append(f"[{body.replace(chr(92), chr(92) * 2)}]")
            i = end
        elif c == "{":
            brace_depth += 1
            out.append("(?:")
        elif c == "}" and brace_depth:
            brace_depth -= 1
            out.append(")")
        elif c == "," and brace_depth:
            out.append("|")
        else:
            out.append(re.escape(c))
        i += 1

    if brace_depth:
        raise ValueError(f"unclosed alternation in {pattern!r}")
    return "".join(out)


class GlobSet:
    """A compiled set of glob patterns."""

    def __init__(self, patterns: list[str]) -> None:
        self.patterns = list(patterns)
        self._regexes = [re.compile(_translate_glob(p)) for p in patterns]

    def __bool__(self) -> bool:
        return bool(self._regexes)

    def matches(self, *candidates: str) -> bool:
        """True if any pattern fully matches any candidate string."""
        return any(rx.fullmatch(c) for rx in self._regexes for c in candidates)


def build_globset(patterns: list[str], plugin_name: str = PLUGIN_FILE_WATCHER) -> GlobSet:
    """Compile glob patterns, reporting the first bad one as a config error."""
    try:
        return GlobSet(patterns)
    except (ValueError, re.error) as e:
        raise PluginConfigError(f"Invalid glob pattern: {e}", plugin_name=plugin_name) from e


@dataclass(frozen=True)
class _Change:
    kind: ChangeKind
    path: str


# =============================================================================
# PLUGIN
# =============================================================================


class FileWatcherPlugin(Plugin):
    """Polling file-system watcher.

    Class Attributes:
        name: Plugin identifier ("file_watcher").
        version: Plugin version.
        description: Human description.
        config_schema: Configuration model (FileWatcherPluginConfig).
    """

    name: ClassVar[str] = PLUGIN_FILE_WATCHER
    version: ClassVar[str] = PLUGIN_VERSION
    description: ClassVar[str] = "File system watcher for monitoring changes"
    config_schema: ClassVar[type[FileWatcherPluginConfig]] = FileWatcherPluginConfig

    def __init__(self, config: FileWatcherPluginConfig) -> None:
        self._config = config
        self._roots: list[Path] = []
        self._include = GlobSet([])
        self._ignore = GlobSet([])
        self._snapshot: dict[str, int] = {}
        self._pending: list[_Change] = []
        self._task: asyncio.Task[None] | None = None
        self._initialized = False

    def is_enabled(self) -> bool:
        return self._config.enabled

    @property
    def watched_paths(self) -> list[Path]:
        """Roots currently being watched."""
        return list(self._roots)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def initialize(self) -> None:
        """Filter paths, compile globs, take a baseline and start polling.

        Raises:
            PluginConfigError: If no safe path remains or a glob is invalid.
        """
        if not self._config.enabled:
            logger.debug("File watcher plugin is disabled, skipping initialization")
            return
        if self._initialized:
            return

        safe_paths: list[str] = []
        for path in self._config.paths:
            if is_sensitive_path(path):
                logger.warning("Skipping sensitive path", extra={"path": path})
                continue
            safe_paths.append(path)

        if not safe_paths:
            raise PluginConfigError("No safe paths to watch", plugin_name=self.name)

        self._include = build_globset(self._config.patterns, self.name)
        self._ignore = build_globset(self._config.ignore_patterns, self.name)

        self._roots = []
        for path in safe_paths:
            root = Path(_normalize(path))
            if root.exists():
                self._roots.append(root)
                logger.info("Watching path", extra={"path": str(root)})
            else:
                logger.warning("Path does not exist, skipping", extra={"path": path})

        self._snapshot = await asyncio.to_thread(self._scan)
        self._task = asyncio.create_task(self._poll_loop(), name="autonav-file-watcher")
        self._initialized = True

    async def shutdown(self) -> None:
        """Stop the polling task and drop buffered changes."""
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        self._pending.clear()
        self._snapshot = {}
        self._initialized = False

    # =========================================================================
    # SCANNING
    # =========================================================================

    def should_include(self, path: str) -> bool:
        """Apply ignore globs first, then include globs (empty = everything)."""
        candidates = self._match_candidates(path)
        if self._ignore.matches(*candidates):
            return False
        if not self._include:
            return True
        return self._include.matches(*candidates)

    def _match_candidates(self, path: str) -> tuple[str, ...]:
        candidates = [path, os.path.basename(path)]
        for root in self._roots:
            try:
                relative = Path(path).relative_to(root)
            except ValueError:
                continue
            candidates.append(relative.as_posix())
        return tuple(candidates)

    def _scan(self) -> dict[str, int]:
        """Map every file under the watched roots to its mtime."""
        snapshot: dict[str, int] = {}
        for root in self._roots:
            if root.is_file():
                with contextlib.suppress(OSError):
                    snapshot[str(root)] = root.stat().st_mtime_ns
                continue
            for dirpath, _dirnames, filenames in os.walk(root):
                for filename in filenames:
                    full = os.path.join(dirpath, filename)
                    with contextlib.suppress(OSError):
                        snapshot[full] = os.stat(full).st_mtime_ns
        return snapshot

    async def poll_once(self) -> int:
        """Rescan once and buffer the differences.

        Returns:
            Number of raw changes buffered.
        """
        current = await asyncio.to_thread(self._scan)
        previous = self._snapshot
        changes: list[_Change] = []

        for path, mtime in current.items():
            if path not in previous:
                changes.append(_Change("added", path))
            elif previous[path] != mtime:
                changes.append(_Change("changed", path))
        changes.extend(_Change("removed", path) for path in previous if path not in current)

        self._snapshot = current
        self._pending.extend(changes)
        return len(changes)

    async def _poll_loop(self) -> None:
        interval = self._config.poll_interval / 1000
        while True:
            await asyncio.sleep(interval)
            try:
                await self.poll_once()
            except OSError as e:
                logger.warning("File scan failed", extra={"error": str(e)})

    # =========================================================================
    # EVENTS / ACTIONS
    # =========================================================================

    async def listen(self) -> list[PluginEventBase]:
        """Convert buffered changes to events, first notification per path wins."""
        pending, self._pending = self._pending, []
        events: list[PluginEventBase] = []
        seen: set[str] = set()

        for change in pending:
            if change.path in seen or not self.should_include(change.path):
                continue
            seen.add(change.path)
            events.append(_EVENT_TYPES[change.kind](path=change.path))

        return events

    async def execute(self, action: PluginActionBase) -> ActionResult:
        """Handle refresh (restart watches) and clear (drop buffer)."""
        self.ensure_supported(action)

        if isinstance(action, FileWatcherRefresh):
            await self.shutdown()
            await self.initialize()
            return ActionResult.ok({"watching": [str(p) for p in self._roots]})

        if isinstance(action, FileWatcherClear):
            dropped = len(self._pending)
            self._pending.clear()
            return ActionResult.ok({"dropped": dropped})

        return ActionResult.failure(f"Unhandled file watcher action: {type(action).__name__}")

    async def health_check(self) -> PluginHealthStatus:
        if not self._config.enabled:
            return PluginHealthStatus.unhealthy("Plugin is disabled")
        if not self._initialized:
            return PluginHealthStatus.unhealthy("Plugin not initialized")
        if self._task is None or self._task.done():
            return PluginHealthStatus.unhealthy("Watcher not running")
        return PluginHealthStatus.ok()
