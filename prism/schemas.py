from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, JsonValue

from prism.errors import InputValidationError


def require_fields(**fields) -> None:
    """Raises InputValidationError naming every blank field."""
    missing = [name for name, value in fields.items() if not str(value or "").strip()]
    if missing:
        raise InputValidationError(f"{', '.join(missing)} {'is' if len(missing) == 1 else 'are'} required")


class FileChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str = Field(..., description="Path relative to the repository root (e.g. 'main.tf')")
    content: str = Field(default="", description="Full file content; replaces the file entirely")


class ModificationSet(BaseModel):
    """Shape the model is asked to answer with."""
    files: List[FileChange] = Field(default_factory=list)


class PlanResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    plan: JsonValue = Field(..., description="terraform show -json output")
    modified_files: List[FileChange] = Field(default_factory=list)
    branch: str
    commit_hash: str


class ConversationFiles(BaseModel):
    files: List[FileChange] = Field(default_factory=list)
    count: int = 0


# --- Requests ---

class PlanRequest(BaseModel):
    repo_url: str = ""
    github_token: str = ""
    user_id: str = ""
    project_id: str = ""

    def require(self, *names: str) -> None:
        require_fields(**{name: getattr(self, name) for name in names})


class ChangeRequest(PlanRequest):
    conversation_id: str = ""
    message: Optional[str] = None


class ChatRequest(BaseModel):
    message: str = ""
    repo_url: str = ""
    github_token: str = ""
    user_id: str = ""
    project_id: str = ""

    def for_conversation(self, conversation_id: str) -> ChangeRequest:
        return ChangeRequest(
            conversation_id=conversation_id,
            repo_url=self.repo_url,
            github_token=self.github_token,
            user_id=self.user_id,
            project_id=self.project_id,
            message=self.message,
        )


class PullRequestRequest(BaseModel):
    repo_url: str = ""
    github_token: str = ""
    base_branch: Optional[str] = None
    pr_title: Optional[str] = None
    pr_body: Optional[str] = None


class PullRequestResult(BaseModel):
    pr_number: int
    pr_url: str
    branch: str
    base: str


# --- Vault ---

class VaultListResponse(BaseModel):
    values: Dict[str, str] = Field(default_factory=dict)
    status_code: int = Field(default=200, alias="statusCode")
    error: str = ""

    model_config = ConfigDict(populate_by_name=True)

    @property
    def ok(self) -> bool:
        return self.status_code == 200 and not self.error


class ListSecretsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    environment: str
    project_id: str = Field(..., alias="projectId")
    secret_path: str = Field(..., alias="secretPath")


class CreateProjectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    project_name: str = Field(..., alias="projectName")
    project_description: str = Field(default="", alias="projectDescription")
    slug: str = ""
    type: str = ""


class CreateProjectResponse(BaseModel):
    id: str
    name: str
    slug: str = ""


class BucketList(BaseModel):
    buckets: List[str] = Field(default_factory=list)
