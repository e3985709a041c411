"""Live filesystem watching for folder sources."""

from knowdex.watching.handler import FileChangeHandler
from knowdex.watching.watcher import ChangeKind, FileWatcher, WatchError

__all__ = ["ChangeKind", "FileChangeHandler", "FileWatcher", "WatchError"]
