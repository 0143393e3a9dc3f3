import logging
import threading
from typing import Callable, Dict, Iterable, List, Optional

from pydantic import JsonValue

from prism.config import Settings
from prism.errors import ModelError, NotFoundError, PrismError
from prism.github import GitHost, parse_repo_url
from prism.planner import PlanExecutor, TerraformCLI
from prism.process import CommandRunner
from prism.schemas import (
    ChatRequest,
    ChangeRequest,
    ConversationFiles,
    FileChange,
    PlanRequest,
    PlanResult,
    PullRequestRequest,
    PullRequestResult,
    require_fields,
)
from prism.secret_injector import SecretInjector
from prism.state_sync import StateSynchronizer
from prism.vcs import BranchController, CommitPipeline, GitCLI, PushMode, validate_branch_name
from prism.workspace import FileMaterializer, WorkspaceManager

logger = logging.getLogger(__name__)

# One workflow at a time per process (see ConversationWorkflow)
WORKFLOW_LOCK = threading.RLock()

REQUIRED_FIELDS = ("repo_url", "github_token", "user_id", "project_id")


class ConversationWorkflow:
    """
    Composition root for the conversation-to-plan workflow.

    AcquireWorkspace -> EnsureBranch -> MaterializeFiles -> CommitAndPush ->
    GetOrCreateBucket -> RestoreState -> InjectSecrets -> Plan -> PersistState,
    with the workspace released on every exit path.

    Each step is explicit about the workspace path and the environment it
    hands to subprocesses; nothing changes the process cwd or os.environ.
    Runs are still serialized through WORKFLOW_LOCK so that shared clients and
    the legacy os.environ injection mode never interleave.

    Failures are not rolled back: a commit pushed before a later step fails
    stays on the remote branch (at-least-once side effect).
    """

    def __init__(
        self,
        vcs_factory: Callable[[str], object],
        planning_tool,
        state: StateSynchronizer,
        secrets: SecretInjector,
        model=None,
        git_host: Optional[GitHost] = None,
        workspace_root: Optional[str] = None,
        branch_lookup: str = "remote",
        secrets_environment: str = "dev",
        secrets_path: str = "/",
        lock=None,
    ):
        self.vcs_factory = vcs_factory
        self.workspaces = WorkspaceManager(vcs_factory, root=workspace_root)
        self.materializer = FileMaterializer()
        self.planner = PlanExecutor(planning_tool)
        self.state = state
        self.secrets = secrets
        self.model = model
        self.git_host = git_host
        self.branch_lookup = branch_lookup
        self.secrets_environment = secrets_environment
        self.secrets_path = secrets_path
        self._lock = lock or WORKFLOW_LOCK

    @classmethod
    def from_settings(cls, settings: Settings, object_store, vault, model=None, git_host: Optional[GitHost] = None) -> "ConversationWorkflow":
        runner = CommandRunner(timeout=settings.command_timeout)

        def vcs_factory(token: str) -> GitCLI:
            return GitCLI(
                runner,
                auth_token=token,
                git_bin=settings.git_bin,
                author_name=settings.git_author_name,
                author_email=settings.git_author_email,
            )

        return cls(
            vcs_factory=vcs_factory,
            planning_tool=TerraformCLI(runner, terraform_bin=settings.terraform_bin),
            state=StateSynchronizer(object_store, settings.state_object_name, settings.state_local_path),
            secrets=SecretInjector(vault),
            model=model,
            git_host=git_host,
            workspace_root=settings.workspace_root,
            branch_lookup=settings.branch_lookup,
            secrets_environment=settings.secrets_environment,
            secrets_path=settings.secrets_path,
        )

    # =========================================================================
    # Conversation workflows
    # =========================================================================

    def process_changes(self, request: ChangeRequest, changes: Iterable[FileChange],
                        push_mode: PushMode = PushMode.FORCE) -> PlanResult:
        """
        Applies uploaded files to the conversation branch and plans the result.

        Uploads replace the conversation's files wholesale, so the branch is
        force-pushed by default.
        """
        request.require("conversation_id", *REQUIRED_FIELDS)
        branch = validate_branch_name(request.conversation_id)
        changes = list(changes)
        message = request.message or f"Update terraform config for conversation {branch}"

        with self._lock:
            vcs = self.vcs_factory(request.github_token)
            with self.workspaces.workspace(request.repo_url, request.github_token) as ws:
                BranchController(vcs, self.branch_lookup).ensure_branch(ws, branch)
                written = self.materializer.write(ws, changes)
                return self._commit_and_plan(vcs, ws, request, branch, written, message, push_mode)

    def process_chat(self, conversation_id: str, request: ChatRequest) -> PlanResult:
        """
        Lets the model edit the branch's Terraform files, then commits and
        plans. Uses a plain push: a diverged remote branch is an error.
        """
        change_request = request.for_conversation(conversation_id)
        change_request.require("conversation_id", "message", *REQUIRED_FIELDS)
        branch = validate_branch_name(conversation_id)
        if self.model is None:
            raise ModelError("model client is not configured")

        with self._lock:
            vcs = self.vcs_factory(request.github_token)
            with self.workspaces.workspace(request.repo_url, request.github_token) as ws:
                BranchController(vcs, self.branch_lookup).ensure_branch(ws, branch)
                current = self.materializer.list_terraform_files(ws)
                logger.info("Asking model for modifications to %d terraform files", len(current))
                changes = self.model.generate_file_modifications(request.message, current)
                written = self.materializer.write(ws, changes)
                return self._commit_and_plan(vcs, ws, change_request, branch, written, f"AI: {request.message}", PushMode.NORMAL)

    def get_conversation(self, conversation_id: str, repo_url: str, auth_token: str) -> ConversationFiles:
        """Gets (or creates) the conversation branch and returns its .tf files."""
        branch = validate_branch_name(conversation_id)
        require_fields(repo_url=repo_url, github_token=auth_token)

        with self._lock:
            vcs = self.vcs_factory(auth_token)
            with self.workspaces.workspace(repo_url, auth_token) as ws:
                BranchController(vcs, self.branch_lookup).ensure_branch(ws, branch)
                files = self.materializer.list_terraform_files(ws)
        logger.info("Successfully got or created branch for conversation ID: %s", branch)
        return ConversationFiles(files=files, count=len(files))

    def delete_message(self, conversation_id: str, commit_hash: str, repo_url: str, auth_token: str) -> str:
        """Removes one commit from the conversation history (force push). Returns the new head."""
        branch = validate_branch_name(conversation_id)
        require_fields(repo_url=repo_url, github_token=auth_token)

        with self._lock:
            vcs = self.vcs_factory(auth_token)
            with self.workspaces.workspace(repo_url, auth_token) as ws:
                BranchController(vcs, self.branch_lookup).ensure_branch(ws, branch, create=False)
                return CommitPipeline(vcs).drop_commit(ws, branch, commit_hash)

    def plan(self, request: PlanRequest) -> JsonValue:
        """Plans the repository's default branch; git history is not touched."""
        request.require(*REQUIRED_FIELDS)
        with self._lock:
            with self.workspaces.workspace(request.repo_url, request.github_token) as ws:
                logger.info("Successfully cloned repo into %s", ws)
                return self._plan_with_state(ws, request.user_id, request.project_id)

    def create_pull_request(self, conversation_id: str, request: PullRequestRequest) -> PullRequestResult:
        branch = validate_branch_name(conversation_id)
        require_fields(repo_url=request.repo_url, github_token=request.github_token)
        owner, repo = parse_repo_url(request.repo_url)
        if self.git_host is None:
            raise PrismError("git host client is not configured")

        base = request.base_branch or "main"
        title = request.pr_title or f"Terraform updates for conversation {branch}"
        body = request.pr_body or f"Automated terraform configuration updates for conversation {branch}"

        with self._lock:
            if not self.git_host.branch_exists(owner, repo, branch, request.github_token):
                raise NotFoundError(f"branch {branch} does not exist")
            number, url = self.git_host.create_pull_request(owner, repo, branch, base, title, body, request.github_token)
        logger.info("Opened PR #%d for %s/%s %s -> %s", number, owner, repo, branch, base)
        return PullRequestResult(pr_number=number, pr_url=url, branch=branch, base=base)

    # =========================================================================
    # Steps
    # =========================================================================

    def _commit_and_plan(self, vcs, ws: str, request: PlanRequest, branch: str, written: List[FileChange],
                         message: str, push_mode: PushMode) -> PlanResult:
        commit_hash = CommitPipeline(vcs).commit_and_push(ws, branch, message, push_mode)
        try:
            plan = self._plan_with_state(ws, request.user_id, request.project_id)
        except PrismError:
            logger.warning("Commit %s was already pushed to %s and is not rolled back", commit_hash, branch)
            raise
        return PlanResult(plan=plan, modified_files=written, branch=branch, commit_hash=commit_hash)

    def _plan_with_state(self, ws: str, user_id: str, project_id: str) -> JsonValue:
        bucket = self.state.get_or_create_bucket(user_id)
        self.state.restore(bucket, ws)

        env: Dict[str, str] = {}
        count = self.secrets.inject(self.secrets_environment, project_id, self.secrets_path, target=env)
        logger.info("Prepared %d secrets for terraform", count)

        plan = self.planner.plan(ws, env=env)
        self.state.persist(bucket, ws)
        return plan
