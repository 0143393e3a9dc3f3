import logging
from functools import lru_cache
from typing import List, Optional

from fastapi import Depends, FastAPI, File, Form, Header, Query, Request, Response, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from prism.config import Settings
from prism.errors import InputValidationError, PrismError
from prism.github import GitHost
from prism.llm import ModelClient
from prism.object_store import ObjectStore
from prism.schemas import (
    BucketList,
    ChangeRequest,
    ChatRequest,
    ConversationFiles,
    CreateProjectRequest,
    CreateProjectResponse,
    FileChange,
    ListSecretsRequest,
    PlanRequest,
    PlanResult,
    PullRequestRequest,
    PullRequestResult,
    VaultListResponse,
    require_fields,
)
from prism.vault import VaultClient
from prism.workflow import ConversationWorkflow

app = FastAPI(title="Prism Orchestrator")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Dependencies (overridable in tests) ---

@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()


logging.basicConfig(level=get_settings().log_level, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


@lru_cache
def get_object_store() -> ObjectStore:
    return ObjectStore.from_settings(get_settings())


@lru_cache
def get_vault() -> VaultClient:
    return VaultClient.from_settings(get_settings())


@lru_cache
def get_workflow() -> ConversationWorkflow:
    settings = get_settings()
    return ConversationWorkflow.from_settings(
        settings,
        object_store=get_object_store(),
        vault=get_vault(),
        model=ModelClient.from_settings(settings),
        git_host=GitHost(settings.github_api_url),
    )


# --- Error mapping ---

@app.exception_handler(PrismError)
async def handle_prism_error(request: Request, exc: PrismError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError):
    fields = [".".join(str(p) for p in err.get("loc", [])[1:]) or "body" for err in exc.errors()]
    return JSONResponse(status_code=400, content={"error": f"invalid request: {', '.join(fields)}"})


def _token_from_header(authorization: str) -> str:
    token = (authorization or "").strip()
    for prefix in ("Bearer ", "bearer ", "token "):
        if token.startswith(prefix):
            return token[len(prefix):].strip()
    return token


# --- Routes ---

@app.get("/")
def read_root():
    return {"status": "Prism Orchestrator Active"}


@app.post("/plan")
def plan(req: PlanRequest, workflow: ConversationWorkflow = Depends(get_workflow)):
    """Plans the default branch of the repository against the user's stored state."""
    return workflow.plan(req)


@app.get("/conversations/{conversation_id}", response_model=ConversationFiles)
def get_conversation(
    conversation_id: str,
    repo_url: str = Query(""),
    authorization: str = Header(""),
    workflow: ConversationWorkflow = Depends(get_workflow),
):
    return workflow.get_conversation(conversation_id, repo_url, _token_from_header(authorization))


@app.post("/conversations/{conversation_id}", response_model=PlanResult)
def upload_conversation_files(
    conversation_id: str,
    repo_url: str = Form(""),
    github_token: str = Form(""),
    user_id: str = Form(""),
    project_id: str = Form(""),
    message: Optional[str] = Form(None),
    files: Optional[List[UploadFile]] = File(None),
    workflow: ConversationWorkflow = Depends(get_workflow),
):
    """
    Replaces/adds the uploaded .tf files on the conversation branch,
    force-pushes, and returns the resulting plan.
    """
    require_fields(repo_url=repo_url, github_token=github_token)
    if not files:
        raise InputValidationError("at least one file is required")

    changes = []
    for upload in files:
        try:
            content = upload.file.read().decode("utf-8")
        except UnicodeDecodeError:
            raise InputValidationError(f"file {upload.filename} is not valid UTF-8 text")
        changes.append(FileChange(path=upload.filename or "", content=content))

    request = ChangeRequest(
        conversation_id=conversation_id,
        repo_url=repo_url,
        github_token=github_token,
        user_id=user_id,
        project_id=project_id,
        message=message,
    )
    return workflow.process_changes(request, changes)


@app.post("/conversations/{conversation_id}/chat", response_model=PlanResult)
def chat(conversation_id: str, req: ChatRequest, workflow: ConversationWorkflow = Depends(get_workflow)):
    """Model-driven edit of the conversation's Terraform files, then plan."""
    return workflow.process_chat(conversation_id, req)


@app.post("/conversations/{conversation_id}/pr", response_model=PullRequestResult)
def create_pull_request(conversation_id: str, req: PullRequestRequest, workflow: ConversationWorkflow = Depends(get_workflow)):
    return workflow.create_pull_request(conversation_id, req)


@app.delete("/conversations/{conversation_id}/messages/{commit_hash}", status_code=204)
def delete_message(
    conversation_id: str,
    commit_hash: str,
    repo_url: str = Query(""),
    authorization: str = Header(""),
    workflow: ConversationWorkflow = Depends(get_workflow),
):
    workflow.delete_message(conversation_id, commit_hash, repo_url, _token_from_header(authorization))
    return Response(status_code=204)


@app.post("/secrets/list", response_model=VaultListResponse)
def list_secrets(req: ListSecretsRequest, vault: VaultClient = Depends(get_vault)):
    require_fields(environment=req.environment, projectId=req.project_id, secretPath=req.secret_path)
    response = vault.list_secrets(req.environment, req.project_id, req.secret_path)
    if not response.ok:
        return JSONResponse(status_code=500, content={"error": f"error retrieving secrets: {response.error}"})
    return response


@app.post("/secrets/project/create", response_model=CreateProjectResponse)
def create_project(req: CreateProjectRequest, vault: VaultClient = Depends(get_vault)):
    require_fields(projectName=req.project_name)
    return vault.create_project(req)


@app.get("/buckets", response_model=BucketList)
def list_buckets(store: ObjectStore = Depends(get_object_store)):
    return BucketList(buckets=store.list_buckets())
