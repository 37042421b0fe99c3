"""
Watch loop

``FileWatcher`` turns file-system events (via watchfiles) into paths;
``ChangeCoalescer`` debounces those paths, classifies each settled batch and
runs only the stages the batch affects, one rebuild at a time.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, FrozenSet, Iterable, List, Optional, Set, Union

from watchfiles import Change, DefaultFilter, awatch

from .cache import CacheSet
from .config import BuildConfig
from .constants import (
    ASSET_EXTENSIONS, MARKUP_EXTENSIONS, NODE_MODULES_DIR, SCRIPT_EXTENSIONS, STYLE_EXTENSIONS,
)
from .errors import AbortedError
from .utils import get_relative_path, matches_any

logger = logging.getLogger(__name__)

# Stage names, in the order a rebuild lists them
STAGE_STATIC = "static"
STAGE_STYLES = "styles"
STAGE_SCRIPTS = "scripts"
STAGE_ASSETS = "assets"
STAGE_MARKUP = "markup"


class CoalescerState(enum.Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    REBUILDING = "rebuilding"


@dataclass
class ChangeBatch:
    """A drained set of changed paths, split into interest groups"""
    markup: Set[Path] = field(default_factory=set)
    styles: Set[Path] = field(default_factory=set)
    scripts: Set[Path] = field(default_factory=set)
    assets: Set[Path] = field(default_factory=set)
    static: Set[Path] = field(default_factory=set)
    ignored: Set[Path] = field(default_factory=set)

    @property
    def invalidates_markup(self) -> bool:
        # Script and style outputs are content-hashed, so markup embedding them goes stale
        return bool(self.markup or self.styles or self.scripts)

    def stages(self) -> List[str]:
        """Stages whose interest group is non-empty"""
        stages = []
        if self.static:
            stages.append(STAGE_STATIC)
        if self.styles:
            stages.append(STAGE_STYLES)
        if self.scripts:
            stages.append(STAGE_SCRIPTS)
        if self.assets:
            stages.append(STAGE_ASSETS)
        if self.invalidates_markup:
            stages.append(STAGE_MARKUP)
        return stages

    @property
    def paths(self) -> FrozenSet[Path]:
        return frozenset(
            self.markup | self.styles | self.scripts | self.assets | self.static | self.ignored
        )


def _is_within(path: Path, directory: Path) -> bool:
    try:
        path.relative_to(directory)
        return True
    except ValueError:
        return False


def is_style_source(config: BuildConfig, path: Path) -> bool:
    """True for paths the configured style globs select, or any file with a style extension"""
    if path.suffix.lower() in STYLE_EXTENSIONS:
        return True
    relative = get_relative_path(path, config.project_root)
    return matches_any(relative, config.css.include) and not matches_any(relative, config.css.exclude)


def classify_changes(config: BuildConfig, paths: Iterable[Union[str, Path]]) -> ChangeBatch:
    """
    Split changed paths into interest groups

    Anything under the static or public directory belongs to the static
    group regardless of its extension, and anything else under the assets
    source directory that is not a script or style belongs to the assets
    group. The groups are disjoint.
    """
    batch = ChangeBatch()
    for raw in paths:
        path = Path(raw)
        suffix = path.suffix.lower()
        if _is_within(path, config.static_dir) or _is_within(path, config.public_dir):
            batch.static.add(path)
        elif suffix in MARKUP_EXTENSIONS:
            batch.markup.add(path)
        elif is_style_source(config, path):
            batch.styles.add(path)
        elif suffix in SCRIPT_EXTENSIONS:
            batch.scripts.add(path)
        elif suffix in ASSET_EXTENSIONS or _is_within(path, config.assets_src_dir):
            batch.assets.add(path)
        else:
            batch.ignored.add(path)
    return batch


RebuildCallback = Callable[[ChangeBatch], Awaitable[None]]


class ChangeCoalescer:
    """Debounces change notifications into one rebuild at a time"""

    def __init__(
        self,
        config: BuildConfig,
        rebuild: RebuildCallback,
        caches: Optional[CacheSet] = None,
        debounce: Optional[float] = None,
    ):
        self.config = config
        self.rebuild = rebuild
        self.caches = caches
        self.debounce = config.debounce if debounce is None else debounce
        self.state = CoalescerState.IDLE
        self.passes = 0
        self._pending: Set[Path] = set()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._task: Optional["asyncio.Task"] = None

    @property
    def pending(self) -> FrozenSet[Path]:
        return frozenset(self._pending)

    def notify(self, path: Union[str, Path]) -> None:
        """
        Record a changed path

        Outside a rebuild this (re)arms the debounce timer; during a rebuild
        the path waits for the follow-up pass.
        """
        self._pending.add(Path(path))
        if self.state is CoalescerState.REBUILDING:
            logger.debug(f"Rebuild in progress, deferring {Path(path).name}")
            return

        self.state = CoalescerState.ACCUMULATING
        self._arm_timer()

    def _arm_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.debounce, self._fire)

    def _fire(self) -> None:
        self._timer = None
        if self.state is CoalescerState.REBUILDING:
            return
        self._task = asyncio.ensure_future(self._process())

    def drain(self) -> Set[Path]:
        """Snapshot and clear the pending set"""
        changed, self._pending = self._pending, set()
        return changed

    async def _process(self) -> None:
        self.state = CoalescerState.REBUILDING
        try:
            while self._pending:
                await self._rebuild_once(self.drain())
        finally:
            self.state = CoalescerState.IDLE

    async def _rebuild_once(self, changed: Set[Path]) -> None:
        batch = classify_changes(self.config, changed)
        stages = batch.stages()
        names = ", ".join(sorted(get_relative_path(p, self.config.project_root) for p in changed))
        if not stages:
            logger.debug(f"No stage interested in: {names}")
            return

        logger.info(f"Detected changes in: {names}")
        if batch.invalidates_markup and self.caches is not None:
            self.caches.markup.clear()

        self.passes += 1
        try:
            await self.rebuild(batch)
        except AbortedError as e:
            logger.debug(f"Rebuild aborted: {e}")
        except Exception as e:
            logger.error(f"Rebuild failed: {e}")

    async def wait_idle(self) -> None:
        """Wait until no debounce is armed and no rebuild is running"""
        while True:
            if self._task is not None and not self._task.done():
                await asyncio.gather(self._task, return_exceptions=True)
            elif self._timer is not None:
                await asyncio.sleep(self.debounce / 2 or 0.01)
            else:
                return

    async def close(self) -> None:
        """Cancel the armed timer and any running pass"""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        self._pending.clear()
        self.state = CoalescerState.IDLE


class KilnFilter(DefaultFilter):
    """watchfiles filter limited to the files a build consumes"""

    def __init__(self, config: BuildConfig):
        self.config = config
        super().__init__(ignore_paths=[str(config.out_dir), str(config.project_root / NODE_MODULES_DIR)])

    def __call__(self, change: Change, path: str) -> bool:
        if not super().__call__(change, path):
            return False
        return self.is_interesting(Path(path))

    def is_interesting(self, path: Path) -> bool:
        config = self.config
        if any(_is_within(path, d) for d in (config.static_dir, config.public_dir, config.assets_src_dir)):
            return True
        suffix = path.suffix.lower()
        if suffix in MARKUP_EXTENSIONS or suffix in SCRIPT_EXTENSIONS or suffix in ASSET_EXTENSIONS:
            return True
        return is_style_source(config, path)


class FileWatcher:
    """Feeds file-system changes under the project's source directories to a callback"""

    def __init__(self, config: BuildConfig, on_change: Callable[[Path], None]):
        self.config = config
        self.on_change = on_change
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional["asyncio.Task"] = None

    def watch_paths(self) -> List[Path]:
        candidates = [self.config.src_dir, self.config.static_dir, self.config.public_dir]
        return [path for path in dict.fromkeys(candidates) if path.is_dir()]

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start watching in a background task"""
        if self.is_running:
            logger.warning("Watcher is already running")
            return

        paths = self.watch_paths()
        if not paths:
            logger.warning("Nothing to watch: no source, static or public directory")
            return

        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._watch(paths))
        logger.info(f"Watching for changes in: {', '.join(p.name for p in paths)}")

    async def _watch(self, paths: List[Path]) -> None:
        async for changes in awatch(
            *paths,
            watch_filter=KilnFilter(self.config),
            stop_event=self._stop_event,
            debounce=50,
            step=25,
        ):
            for change, path in changes:
                logger.debug(f"{change.name}: {path}")
                self.on_change(Path(path))

    async def stop(self) -> None:
        """Stop watching and wait for the watcher task to exit"""
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            try:
                await self._task
            except Exception as e:
                logger.error(f"Watcher error: {e}")
            self._task = None
            logger.info("Watcher stopped")
