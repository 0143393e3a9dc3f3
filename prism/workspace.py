import contextlib
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional

from prism.errors import CloneError, FileWriteError, PathEscapeError
from prism.schemas import FileChange

logger = logging.getLogger(__name__)

WORKSPACE_PREFIX = "cloned-repo-"
SKIP_DIRS = {".git", ".terraform"}


class WorkspaceManager:
    """
    Owns the lifecycle of the per-invocation clone.

    vcs_factory: builds a VersionControl for a given auth token; the token
    lives only as long as that object.
    """

    def __init__(self, vcs_factory: Callable[[str], object], root: Optional[str] = None):
        self.vcs_factory = vcs_factory
        self.root = root

    def acquire(self, repo_url: str, auth_token: str) -> str:
        if self.root:
            os.makedirs(self.root, exist_ok=True)
        try:
            path = tempfile.mkdtemp(prefix=WORKSPACE_PREFIX, dir=self.root)
        except OSError as e:
            raise CloneError("failed to create temp dir", output=str(e))

        logger.info("Cloning repository into %s", path)
        try:
            self.vcs_factory(auth_token).clone(repo_url, path)
        except BaseException:
            self.release(path)
            raise
        return path

    def release(self, path: Optional[str]) -> None:
        if not path:
            return
        shutil.rmtree(path, ignore_errors=True)
        if os.path.exists(path):
            logger.warning("Could not fully remove workspace %s", path)
        else:
            logger.info("Removed temporary directory: %s", path)

    @contextlib.contextmanager
    def workspace(self, repo_url: str, auth_token: str) -> Iterator[str]:
        """Clone for the duration of the block; the directory is removed on every exit path."""
        path = self.acquire(repo_url, auth_token)
        try:
            yield path
        finally:
            self.release(path)


def dedupe_changes(changes: Iterable[FileChange]) -> List[FileChange]:
    """Last write wins for a repeated path; order follows first appearance."""
    by_path = {}
    for change in changes:
        if change.path in by_path:
            logger.warning("Duplicate file change for %s; keeping the last one", change.path)
        by_path[change.path] = change
    return list(by_path.values())


class FileMaterializer:
    def resolve(self, workspace: str, rel_path: str) -> Path:
        if not rel_path or not rel_path.strip():
            raise PathEscapeError(rel_path)
        candidate = Path(rel_path)
        if candidate.is_absolute() or ".." in candidate.parts:
            raise PathEscapeError(rel_path)

        root = Path(workspace).resolve()
        target = (root / candidate).resolve()
        if target == root or root not in target.parents:
            raise PathEscapeError(rel_path)
        if ".git" in target.relative_to(root).parts:
            raise PathEscapeError(rel_path)
        return target

    def write(self, workspace: str, changes: Iterable[FileChange]) -> List[FileChange]:
        """
        Writes every change, replacing file content entirely.

        All paths are validated before the first write, so an escaping path
        leaves the workspace untouched. Returns the de-duplicated changes.
        """
        changes = dedupe_changes(changes)
        targets = [(change, self.resolve(workspace, change.path)) for change in changes]

        for change, target in targets:
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                with open(target, "w", encoding="utf-8", newline="") as f:
                    f.write(change.content)
            except OSError as e:
                raise FileWriteError(change.path, str(e))
            logger.info("Wrote file: %s", change.path)
        return changes

    def list_terraform_files(self, workspace: str) -> List[FileChange]:
        root = Path(workspace)
        files = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = [d for d in dirnames if d not in SKIP_DIRS]
            for name in filenames:
                if not name.endswith(".tf"):
                    continue
                path = Path(dirpath) / name
                files.append(FileChange(
                    path=path.relative_to(root).as_posix(),
                    content=path.read_text(encoding="utf-8", errors="replace"),
                ))
        files.sort(key=lambda f: f.path)
        return files
