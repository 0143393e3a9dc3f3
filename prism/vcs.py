import base64
import enum
import logging
from typing import Dict, List

from prism.errors import (
    BranchSyncError,
    CloneError,
    CommitError,
    ExternalToolError,
    InputValidationError,
    NotFoundError,
    PushError,
)
from prism.process import CommandResult, CommandRunner

logger = logging.getLogger(__name__)

REMOTE = "origin"
NOTHING_TO_COMMIT_MARKERS = ("nothing to commit", "nothing added to commit")


class PushMode(str, enum.Enum):
    """
    NORMAL refuses to overwrite a diverged remote branch.
    FORCE replaces the remote branch and discards remote-only commits.
    """
    NORMAL = "normal"
    FORCE = "force"


class GitCLI:
    """
    VersionControl backed by the `git` executable.

    The auth token is handed to network commands (clone/pull/push) as a
    per-invocation `http.extraheader`, so it never lands in the URL or in
    `.git/config`.
    """

    def __init__(self, runner: CommandRunner, auth_token: str = "", git_bin: str = "git",
                 author_name: str = "Prism", author_email: str = "prism@localhost"):
        self.runner = runner
        self.auth_token = auth_token
        self.git_bin = git_bin
        self.author_name = author_name
        self.author_email = author_email

    def _auth_args(self) -> List[str]:
        if not self.auth_token:
            return []
        basic = base64.b64encode(f"x-access-token:{self.auth_token}".encode()).decode()
        return ["-c", f"http.extraheader=Authorization: Basic {basic}"]

    def _identity_args(self) -> List[str]:
        return ["-c", f"user.name={self.author_name}", "-c", f"user.email={self.author_email}"]

    def _env(self) -> Dict[str, str]:
        # C locale: no-op commit detection matches git's English messages
        return {"GIT_TERMINAL_PROMPT": "0", "LC_ALL": "C"}

    def _git(self, args: List[str], cwd: str, network: bool = False, identity: bool = False) -> CommandResult:
        cmd = [self.git_bin]
        if network:
            cmd += self._auth_args()
        if identity:
            cmd += self._identity_args()
        cmd += args
        result = self.runner.run(cmd, cwd=cwd, env_overlay=self._env())
        result.args = _redact(result.args)
        return result

    # --- Repository ---

    def clone(self, repo_url: str, dest: str) -> None:
        try:
            result = self._git(["clone", repo_url, "."], cwd=dest, network=True)
        except ExternalToolError as e:
            raise CloneError(f"failed to clone repo ({e.summary})", command=_redact(e.command), output=e.output)
        if not result.ok:
            raise CloneError("failed to clone repo", command=result.args, output=result.output, returncode=result.returncode)

    def status(self, workspace: str) -> str:
        return self._git(["status", "--short"], cwd=workspace).output

    # --- Branches ---

    def local_branch_exists(self, workspace: str, branch: str) -> bool:
        return self._git(["rev-parse", "--verify", "--quiet", f"refs/heads/{branch}"], cwd=workspace).ok

    def remote_branch_exists(self, workspace: str, branch: str) -> bool:
        """Consults the remote-tracking ref recorded by the clone."""
        return self._git(["rev-parse", "--verify", "--quiet", f"refs/remotes/{REMOTE}/{branch}"], cwd=workspace).ok

    def create_branch(self, workspace: str, branch: str) -> None:
        result = self._git(["checkout", "-b", branch], cwd=workspace)
        if not result.ok:
            raise BranchSyncError(f"failed to create branch {branch}", command=result.args, output=result.output, returncode=result.returncode)

    def track_remote_branch(self, workspace: str, branch: str) -> None:
        result = self._git(["checkout", "-b", branch, "--track", f"{REMOTE}/{branch}"], cwd=workspace)
        if not result.ok:
            raise BranchSyncError(f"failed to check out remote branch {branch}", command=result.args, output=result.output, returncode=result.returncode)

    def checkout(self, workspace: str, branch: str) -> None:
        result = self._git(["checkout", branch], cwd=workspace)
        if not result.ok:
            raise BranchSyncError(f"failed to checkout to branch {branch}", command=result.args, output=result.output, returncode=result.returncode)

    def pull(self, workspace: str, branch: str) -> None:
        # --ff-only: a diverged branch is an error, never an automatic merge
        result = self._git(["pull", "--ff-only", REMOTE, branch], cwd=workspace, network=True)
        if not result.ok:
            raise BranchSyncError(f"failed to pull branch {branch}", command=result.args, output=result.output, returncode=result.returncode)

    def push(self, workspace: str, branch: str, mode: PushMode = PushMode.NORMAL) -> None:
        if mode == PushMode.FORCE:
            args = ["push", "--force", REMOTE, branch]
        else:
            args = ["push", "-u", REMOTE, branch]
        result = self._git(args, cwd=workspace, network=True)
        if not result.ok:
            raise PushError(f"failed to push branch {branch} to remote", command=result.args, output=result.output, returncode=result.returncode)

    # --- Commits ---

    def add_all(self, workspace: str) -> None:
        result = self._git(["add", "."], cwd=workspace)
        if not result.ok:
            raise CommitError("failed to add files", command=result.args, output=result.output, returncode=result.returncode)

    def commit(self, workspace: str, message: str) -> bool:
        """Returns False when there was nothing to commit."""
        result = self._git(["commit", "-m", message], cwd=workspace, identity=True)
        if result.ok:
            return True
        if any(marker in result.output for marker in NOTHING_TO_COMMIT_MARKERS):
            return False
        raise CommitError("failed to commit", command=result.args, output=result.output, returncode=result.returncode)

    def head(self, workspace: str) -> str:
        result = self._git(["rev-parse", "HEAD"], cwd=workspace)
        if not result.ok:
            raise CommitError("failed to get commit hash", command=result.args, output=result.output, returncode=result.returncode)
        return result.stdout.strip()

    def is_ancestor(self, workspace: str, commit: str, ref: str = "HEAD") -> bool:
        return self._git(["merge-base", "--is-ancestor", commit, ref], cwd=workspace).ok

    def drop_commit(self, workspace: str, commit: str) -> None:
        """Removes `commit` from the current branch by replaying its descendants onto its parent."""
        result = self._git(["rebase", "--onto", f"{commit}^", commit], cwd=workspace, identity=True)
        if not result.ok:
            self._git(["rebase", "--abort"], cwd=workspace)
            raise BranchSyncError(f"failed to remove commit {commit}", command=result.args, output=result.output, returncode=result.returncode)


def _redact(args: List[str]) -> List[str]:
    return ["http.extraheader=<redacted>" if arg.startswith("http.extraheader=") else arg for arg in args]


def validate_branch_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise InputValidationError("conversation id is required")
    if name.startswith("-") or name.endswith((".", "/", ".lock")) or ".." in name or "//" in name or "@{" in name:
        raise InputValidationError(f"conversation id is not a valid branch name: {name!r}")
    if any(ch in name for ch in " ~^:?*[\\") or any(ord(ch) < 32 or ord(ch) == 127 for ch in name):
        raise InputValidationError(f"conversation id is not a valid branch name: {name!r}")
    return name


class BranchController:
    """Maps a conversation to its branch and keeps local and remote in step."""

    CREATED = "created"
    CHECKED_OUT = "checked_out"
    TRACKED = "tracked"

    def __init__(self, vcs, lookup: str = "remote"):
        self.vcs = vcs
        self.lookup = lookup

    def ensure_branch(self, workspace: str, branch: str, create: bool = True) -> str:
        """
        Checks out the conversation branch, creating it when missing, and
        pushes it with upstream tracking. With create=False a missing branch
        raises NotFoundError instead.
        """
        branch = validate_branch_name(branch)

        if self.vcs.local_branch_exists(workspace, branch):
            self.vcs.checkout(workspace, branch)
            self.vcs.pull(workspace, branch)
            action = self.CHECKED_OUT
        elif self.lookup == "remote" and self.vcs.remote_branch_exists(workspace, branch):
            self.vcs.track_remote_branch(workspace, branch)
            action = self.TRACKED
        elif not create:
            raise NotFoundError(f"branch {branch} does not exist")
        else:
            self.vcs.create_branch(workspace, branch)
            action = self.CREATED
        logger.info("Branch %s %s", branch, action.replace("_", " "))

        self.vcs.push(workspace, branch, PushMode.NORMAL)
        return action


class CommitPipeline:
    def __init__(self, vcs):
        self.vcs = vcs

    def commit_and_push(self, workspace: str, branch: str, message: str, mode: PushMode = PushMode.NORMAL) -> str:
        """
        Stages everything in the workspace, commits, and pushes `branch`.

        "Nothing to commit" is not an error: the current HEAD is returned
        unchanged. The push is attempted either way.
        """
        self.vcs.add_all(workspace)
        if self.vcs.commit(workspace, message):
            logger.info("Committed changes with message: %s", message)
        else:
            logger.info("No changes to commit")

        commit_hash = self.vcs.head(workspace)
        self.vcs.push(workspace, branch, mode)
        logger.info("Pushed %s to remote branch %s (%s push)", commit_hash[:12], branch, mode.value)
        return commit_hash

    def drop_commit(self, workspace: str, branch: str, commit_hash: str) -> str:
        """Removes one commit from `branch` and force-pushes. Returns the new HEAD."""
        commit_hash = (commit_hash or "").strip()
        if not commit_hash or commit_hash.startswith("-"):
            raise InputValidationError("commit hash is required")
        if not self.vcs.is_ancestor(workspace, commit_hash, "HEAD"):
            raise NotFoundError(f"commit {commit_hash} is not part of branch {branch}")

        self.vcs.drop_commit(workspace, commit_hash)
        new_head = self.vcs.head(workspace)
        self.vcs.push(workspace, branch, PushMode.FORCE)
        logger.info("Removed commit %s from %s; head is now %s", commit_hash, branch, new_head)
        return new_head
