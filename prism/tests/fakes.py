"""Test doubles for the workflow's collaborators."""
import hashlib
import json
import os
import subprocess
from typing import Dict, List, Optional

from prism.errors import BranchSyncError, ObjectStoreError, PlanExecutionError
from prism.process import CommandResult
from prism.schemas import FileChange, VaultListResponse
from prism.vcs import PushMode

PLAN_JSON = {
    "format_version": "1.2",
    "resource_changes": [
        {"address": "x.y", "change": {"actions": ["create"]}},
    ],
}


def snapshot(workspace: str) -> Dict[str, str]:
    files = {}
    for dirpath, dirnames, filenames in os.walk(workspace):
        dirnames[:] = [d for d in dirnames if d not in (".git", ".terraform")]
        for name in filenames:
            path = os.path.join(dirpath, name)
            rel = os.path.relpath(path, workspace).replace(os.sep, "/")
            if rel in ("terraform.tfstate", "tfplan"):
                continue
            with open(path, encoding="utf-8", errors="replace") as f:
                files[rel] = f.read()
    return files


class FakeRemote:
    """Shared 'origin': branch heads plus the snapshot stored for each commit."""

    def __init__(self, seed_files: Optional[Dict[str, str]] = None, default_branch: str = "main"):
        self.default_branch = default_branch
        root = self._hash("", "initial", seed_files or {})
        self.commits = {root: (None, dict(seed_files or {}))}
        self.branches = {default_branch: root}
        self.pushes: List[tuple] = []
        self.clones = 0

    @staticmethod
    def _hash(parent: str, message: str, files: Dict[str, str]) -> str:
        payload = json.dumps([parent, message, sorted(files.items())])
        return hashlib.sha1(payload.encode()).hexdigest()


class FakeVersionControl:
    """
    Records every call and simulates git against a FakeRemote.

    Commit detection compares the workspace's files with the snapshot of HEAD,
    so writing identical content is a no-op commit like real git.
    """

    def __init__(self, remote: FakeRemote, fail: Optional[Dict[str, Exception]] = None):
        self.remote = remote
        self.fail = fail or {}
        self.calls: List[tuple] = []
        self.local_branches: Dict[str, str] = {}
        self.tracking: Dict[str, str] = {}
        self.current: Optional[str] = None

    def _record(self, name: str, *args):
        self.calls.append((name,) + args)
        if name in self.fail:
            raise self.fail[name]

    def _materialize(self, workspace: str, commit: str):
        for path, content in self.remote.commits[commit][1].items():
            target = os.path.join(workspace, path)
            os.makedirs(os.path.dirname(target), exist_ok=True)
            with open(target, "w", encoding="utf-8") as f:
                f.write(content)

    def clone(self, repo_url: str, dest: str) -> None:
        self._record("clone", repo_url, dest)
        self.remote.clones += 1
        head = self.remote.branches[self.remote.default_branch]
        self._materialize(dest, head)
        os.makedirs(os.path.join(dest, ".git"), exist_ok=True)
        self.local_branches = {self.remote.default_branch: head}
        self.tracking = dict(self.remote.branches)
        self.current = self.remote.default_branch

    def local_branch_exists(self, workspace: str, branch: str) -> bool:
        self._record("local_branch_exists", branch)
        return branch in self.local_branches

    def remote_branch_exists(self, workspace: str, branch: str) -> bool:
        self._record("remote_branch_exists", branch)
        return branch in self.tracking

    def create_branch(self, workspace: str, branch: str) -> None:
        self._record("create_branch", branch)
        self.local_branches[branch] = self.local_branches[self.current]
        self.current = branch

    def track_remote_branch(self, workspace: str, branch: str) -> None:
        self._record("track_remote_branch", branch)
        self.local_branches[branch] = self.tracking[branch]
        self.current = branch
        self._materialize(workspace, self.tracking[branch])

    def checkout(self, workspace: str, branch: str) -> None:
        self._record("checkout", branch)
        self.current = branch

    def pull(self, workspace: str, branch: str) -> None:
        self._record("pull", branch)
        remote_head = self.remote.branches.get(branch)
        if remote_head and remote_head != self.local_branches[branch]:
            if not self.is_ancestor(workspace, self.local_branches[branch], remote_head):
                raise BranchSyncError(f"failed to pull branch {branch}", output="fatal: Not possible to fast-forward, aborting.")
            self.local_branches[branch] = remote_head
            self._materialize(workspace, remote_head)

    def push(self, workspace: str, branch: str, mode: PushMode = PushMode.NORMAL) -> None:
        self._record("push", branch, mode)
        self.remote.pushes.append((branch, mode))
        self.remote.branches[branch] = self.local_branches[branch]
        self.tracking[branch] = self.local_branches[branch]

    def add_all(self, workspace: str) -> None:
        self._record("add_all")

    def commit(self, workspace: str, message: str) -> bool:
        self._record("commit", message)
        head = self.local_branches[self.current]
        files = snapshot(workspace)
        if files == self.remote.commits[head][1]:
            return False
        new = FakeRemote._hash(head, message, files)
        self.remote.commits[new] = (head, files)
        self.local_branches[self.current] = new
        return True

    def head(self, workspace: str) -> str:
        self._record("head")
        return self.local_branches[self.current]

    def is_ancestor(self, workspace: str, commit: str, ref: str = "HEAD") -> bool:
        node = self.local_branches[self.current] if ref == "HEAD" else ref
        while node is not None:
            if node == commit:
                return True
            node = self.remote.commits.get(node, (None, None))[0]
        return False

    def drop_commit(self, workspace: str, commit: str) -> None:
        self._record("drop_commit", commit)
        if self.local_branches[self.current] != commit:
            raise BranchSyncError(f"failed to remove commit {commit}", output="only the head commit can be dropped here")
        self.local_branches[self.current] = self.remote.commits[commit][0]

    @property
    def pushed_modes(self) -> List[PushMode]:
        return [call[2] for call in self.calls if call[0] == "push"]


class FakeVCSFactory:
    """vcs_factory returning FakeVersionControl objects bound to one remote."""

    def __init__(self, remote: Optional[FakeRemote] = None, fail: Optional[Dict[str, Exception]] = None):
        self.remote = remote or FakeRemote()
        self.fail = fail or {}
        self.created: List[FakeVersionControl] = []
        self.tokens: List[str] = []
        self._by_token: Dict[str, FakeVersionControl] = {}

    def __call__(self, token: str) -> FakeVersionControl:
        # The workspace manager and the workflow share one instance per token
        # and invocation; a fresh clone resets its local view anyway.
        self.tokens.append(token)
        if token not in self._by_token:
            vcs = FakeVersionControl(self.remote, fail=self.fail)
            self._by_token[token] = vcs
            self.created.append(vcs)
        return self._by_token[token]


class FakePlanningTool:
    def __init__(self, plan_json=None, fail_stage: Optional[str] = None, show_output: Optional[str] = None,
                 state_update: Optional[bytes] = None, state_path: str = "terraform.tfstate"):
        self.plan_json = PLAN_JSON if plan_json is None else plan_json
        self.fail_stage = fail_stage
        self.show_output = show_output
        self.state_update = state_update
        self.state_path = state_path
        self.calls: List[tuple] = []
        self.seen_state: List[bytes] = []

    def _stage(self, stage: str, workspace: str, env):
        self.calls.append((stage, workspace, dict(env or {})))
        if stage == self.fail_stage:
            raise PlanExecutionError(stage, command=["terraform", stage], output=f"Error: {stage} exploded", returncode=1)

    def init(self, workspace: str, env=None) -> None:
        self._stage("init", workspace, env)

    def plan(self, workspace: str, plan_file: str = "tfplan", env=None) -> str:
        self._stage("plan", workspace, env)
        state = os.path.join(workspace, self.state_path)
        with open(state, "rb") as f:
            self.seen_state.append(f.read())
        if self.state_update is not None:
            with open(state, "wb") as f:
                f.write(self.state_update)
        with open(os.path.join(workspace, plan_file), "wb") as f:
            f.write(b"binary-plan")
        return "Plan: 1 to add, 0 to change, 0 to destroy."

    def show_json(self, workspace: str, plan_file: str = "tfplan", env=None) -> str:
        self._stage("show", workspace, env)
        if self.show_output is not None:
            return self.show_output
        return json.dumps(self.plan_json)

    @property
    def stages(self) -> List[str]:
        return [c[0] for c in self.calls]


class InMemoryObjectStore:
    def __init__(self):
        self.buckets: Dict[str, Dict[str, bytes]] = {}
        self.created: List[str] = []

    def list_buckets(self) -> List[str]:
        return sorted(self.buckets)

    def get_or_create_bucket(self, name: str) -> str:
        if name not in self.buckets:
            self.buckets[name] = {}
            self.created.append(name)
        return name

    def download(self, bucket: str, object_name: str, dest_path: str) -> None:
        try:
            data = self.buckets[bucket][object_name]
        except KeyError:
            raise ObjectStoreError(f"error downloading object {object_name} from bucket {bucket}: NoSuchKey", 404)
        with open(dest_path, "wb") as f:
            f.write(data)

    def upload(self, bucket: str, object_name: str, src_path: str) -> None:
        if bucket not in self.buckets:
            raise ObjectStoreError(f"bucket {bucket} not found", 404)
        with open(src_path, "rb") as f:
            self.buckets[bucket][object_name] = f.read()


class FakeVault:
    def __init__(self, values: Optional[Dict[str, str]] = None, status_code: int = 200, error: str = ""):
        self.values = values if values is not None else {"TF_VAR_region": "us-east-1", "AWS_ACCESS_KEY_ID": "AKIAFAKE"}
        self.status_code = status_code
        self.error = error
        self.calls: List[tuple] = []

    def list_secrets(self, environment: str, project_id: str, secret_path: str) -> VaultListResponse:
        self.calls.append((environment, project_id, secret_path))
        if self.status_code != 200 or self.error:
            return VaultListResponse(status_code=self.status_code, error=self.error)
        return VaultListResponse(values=dict(self.values), status_code=200)


class FakeModel:
    def __init__(self, files: Optional[List[FileChange]] = None):
        self.files = files or []
        self.calls: List[tuple] = []

    def generate_file_modifications(self, user_message: str, current_files: List[FileChange]) -> List[FileChange]:
        self.calls.append((user_message, list(current_files)))
        return list(self.files)


class RecordingRunner:
    """CommandRunner double: records calls and replies from a queue of canned results."""

    def __init__(self, results: Optional[List[CommandResult]] = None, default: Optional[CommandResult] = None):
        self.results = list(results or [])
        self.default = default
        self.calls: List[dict] = []

    def run(self, args, cwd, env_overlay=None, timeout=None) -> CommandResult:
        self.calls.append({"args": list(args), "cwd": cwd, "env": dict(env_overlay or {})})
        if self.results:
            result = self.results.pop(0)
        elif self.default is not None:
            result = self.default
        else:
            result = CommandResult(args=list(args), returncode=0)
        if isinstance(result, Exception):
            raise result
        return result.model_copy(update={"args": list(args)})


def ok(stdout: str = "", stderr: str = "") -> CommandResult:
    return CommandResult(args=[], returncode=0, stdout=stdout, stderr=stderr)


def failed(stdout: str = "", stderr: str = "", code: int = 1) -> CommandResult:
    return CommandResult(args=[], returncode=code, stdout=stdout, stderr=stderr)


# --- Real git fixtures ---

GIT_TEST_ENV = {
    "GIT_CONFIG_NOSYSTEM": "1",
    "GIT_CONFIG_GLOBAL": os.devnull,
    "GIT_AUTHOR_NAME": "Test",
    "GIT_AUTHOR_EMAIL": "test@example.com",
    "GIT_COMMITTER_NAME": "Test",
    "GIT_COMMITTER_EMAIL": "test@example.com",
}


def git(*args, cwd: str) -> str:
    env = dict(os.environ)
    env.update(GIT_TEST_ENV)
    completed = subprocess.run(["git"] + list(args), cwd=cwd, env=env, capture_output=True, text=True, check=True)
    return completed.stdout.strip()


def make_remote(base: str, files: Optional[Dict[str, str]] = None) -> str:
    """Creates a bare repository whose `main` branch holds `files`. Returns its path."""
    remote = os.path.join(base, "remote.git")
    seed = os.path.join(base, "seed")
    os.makedirs(seed)
    git("init", "--bare", remote, cwd=base)
    git("init", cwd=seed)
    for path, content in (files or {"README.md": "# infra\n"}).items():
        target = os.path.join(seed, path)
        os.makedirs(os.path.dirname(target), exist_ok=True)
        with open(target, "w", encoding="utf-8") as f:
            f.write(content)
    git("add", ".", cwd=seed)
    git("commit", "-m", "initial", cwd=seed)
    git("push", remote, "HEAD:refs/heads/main", cwd=seed)
    git("symbolic-ref", "HEAD", "refs/heads/main", cwd=remote)
    return remote
