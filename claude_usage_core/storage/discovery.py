"""
Usage file discovery.

Walks the projects directory (one sub-directory per project, one ``.jsonl``
file per session) and builds FileMetadata for every log file.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Sequence

from .models import FileMetadata

logger = logging.getLogger(__name__)

LOG_FILE_SUFFIX = ".jsonl"
DEFAULT_SKIP_PREFIXES = ("-private-var-folders-",)

# Returns a cached modification time the caller vouches for, or None to stat the file.
TrustedMtimeLookup = Callable[[str], Optional[float]]


def decode_project_path(encoded: str) -> str:
    """Turn a project directory name back into the path it encodes.

    ``-Users-me-code-app`` -> ``/Users/me/code/app``. Dashes that were part
    of the original path cannot be told apart from separators.
    """
    if encoded.startswith("-"):
        return "/" + encoded[1:].replace("-", "/")
    return encoded.replace("-", "/")


def project_name(project_path: str) -> str:
    """Last path component of a decoded project path."""
    stripped = project_path.rstrip("/")
    return os.path.basename(stripped) or project_path


def should_skip_directory(name: str, skip_prefixes: Sequence[str] = DEFAULT_SKIP_PREFIXES) -> bool:
    """Hidden directories and known sandbox directories hold no usage data."""
    return name.startswith(".") or any(name.startswith(prefix) for prefix in skip_prefixes)


def count_sessions(files: Iterable[FileMetadata]) -> int:
    """Number of distinct session files."""
    return len({f.session_name for f in files})


def filter_modified_since(files: Iterable[FileMetadata], since: datetime) -> List[FileMetadata]:
    """Files whose modification time is at or after ``since``."""
    cutoff = since.timestamp()
    return [f for f in files if f.modification_time >= cutoff]


class FileCatalog:
    """Discovers usage log files below a projects directory."""

    def __init__(self, projects_dir: str, skip_prefixes: Sequence[str] = DEFAULT_SKIP_PREFIXES):
        """Initialize the catalog.

        Args:
            projects_dir: Directory holding one sub-directory per project
            skip_prefixes: Directory name prefixes to ignore
        """
        self.projects_dir = str(projects_dir)
        self.skip_prefixes = tuple(skip_prefixes)

    def discover(self, trusted_mtime: Optional[TrustedMtimeLookup] = None) -> List[FileMetadata]:
        """Return metadata for every log file, oldest first.

        A missing projects directory yields an empty list. A project
        directory that cannot be listed is logged and skipped.

        Args:
            trusted_mtime: Optional lookup of modification times that do not
                need a fresh ``stat``

        Returns:
            FileMetadata sorted by earliest_timestamp ascending
        """
        if not os.path.isdir(self.projects_dir):
            return []

        try:
            with os.scandir(self.projects_dir) as it:
                project_dirs = sorted(
                    entry.name for entry in it
                    if entry.is_dir() and not should_skip_directory(entry.name, self.skip_prefixes)
                )
        except OSError as e:
            logger.warning("Could not list projects directory %s: %s", self.projects_dir, e)
            return []

        files = []
        for project_dir in project_dirs:
            files.extend(self._discover_project(project_dir, trusted_mtime))

        files.sort(key=lambda f: (f.earliest_timestamp, f.path))
        logger.debug("Discovered %d usage files in %d projects", len(files), len(project_dirs))
        return files

    def _discover_project(
        self,
        project_dir: str,
        trusted_mtime: Optional[TrustedMtimeLookup],
    ) -> List[FileMetadata]:
        project_path = os.path.join(self.projects_dir, project_dir)
        try:
            with os.scandir(project_path) as it:
                names = [
                    entry.name for entry in it
                    if entry.name.endswith(LOG_FILE_SUFFIX) and entry.is_file()
                ]
        except OSError as e:
            logger.warning("Skipping unreadable project directory %s: %s", project_path, e)
            return []

        files = []
        for name in names:
            metadata = self._build_metadata(os.path.join(project_path, name), project_dir, trusted_mtime)
            if metadata is not None:
                files.append(metadata)
        return files

    def _build_metadata(
        self,
        path: str,
        project_dir: str,
        trusted_mtime: Optional[TrustedMtimeLookup],
    ) -> Optional[FileMetadata]:
        mtime = trusted_mtime(path) if trusted_mtime is not None else None
        if mtime is None:
            try:
                mtime = os.stat(path).st_mtime
            except OSError as e:
                logger.warning("Could not stat usage file %s: %s", path, e)
                return None

        return FileMetadata(
            path=path,
            project_dir=project_dir,
            earliest_timestamp=datetime.fromtimestamp(mtime, tz=timezone.utc),
            modification_time=mtime,
        )
