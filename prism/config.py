import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

from prism.errors import InputValidationError

BRANCH_LOOKUP_POLICIES = ("local", "remote")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _get_env(key: str, default: str = "") -> str:
    value = os.getenv(key)
    if value is None or value == "":
        return default
    return value


def _get_bool(key: str, default: bool = False) -> bool:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Runtime configuration, read once from the environment (and `.env`)."""

    model_config = ConfigDict(protected_namespaces=())

    # Infisical
    infisical_client_id: str = ""
    infisical_client_secret: str = ""
    infisical_site_url: str = "http://infisical-backend:8080"

    # MinIO (S3 API)
    minio_endpoint: str = "minio:9000"
    minio_access_key_id: str = "minio-admin"
    minio_secret_access_key: str = "minio-admin-password"
    minio_use_ssl: bool = False
    minio_region: str = "us-east-1"

    # Model
    gemini_api_key: str = ""
    model_name: str = "gemini-2.5-pro"

    github_api_url: str = "https://api.github.com"

    # Workflow
    workspace_root: str = "/var/tmp"
    secrets_environment: str = "dev"
    secrets_path: str = "/"
    state_object_name: str = "terraform.tfstate"
    state_local_path: str = "terraform.tfstate"
    git_bin: str = "git"
    terraform_bin: str = "terraform"
    command_timeout: Optional[float] = None
    branch_lookup: str = "remote"
    git_author_name: str = "Prism"
    git_author_email: str = "prism@localhost"

    log_level: str = "INFO"

    @property
    def minio_endpoint_url(self) -> str:
        scheme = "https" if self.minio_use_ssl else "http"
        if self.minio_endpoint.startswith(("http://", "https://")):
            return self.minio_endpoint
        return f"{scheme}://{self.minio_endpoint}"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()

        timeout_raw = _get_env("COMMAND_TIMEOUT")
        timeout = None
        if timeout_raw:
            try:
                timeout = float(timeout_raw)
            except ValueError:
                raise InputValidationError(f"COMMAND_TIMEOUT must be a number of seconds, got {timeout_raw!r}")

        branch_lookup = _get_env("BRANCH_LOOKUP", "remote").lower()
        if branch_lookup not in BRANCH_LOOKUP_POLICIES:
            raise InputValidationError(
                f"BRANCH_LOOKUP must be one of {', '.join(BRANCH_LOOKUP_POLICIES)}, got {branch_lookup!r}"
            )

        log_level = _get_env("LOG_LEVEL", "INFO").upper()
        if log_level not in LOG_LEVELS:
            raise InputValidationError(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {log_level!r}")

        return cls(
            infisical_client_id=_get_env("INFISICAL_CLIENT_ID"),
            infisical_client_secret=_get_env("INFISICAL_CLIENT_SECRET"),
            infisical_site_url=_get_env("INFISICAL_SITE_URL", "http://infisical-backend:8080"),
            minio_endpoint=_get_env("MINIO_ENDPOINT", "minio:9000"),
            minio_access_key_id=_get_env("MINIO_ACCESS_KEY_ID", "minio-admin"),
            minio_secret_access_key=_get_env("MINIO_SECRET_ACCESS_KEY", "minio-admin-password"),
            minio_use_ssl=_get_bool("MINIO_USE_SSL"),
            minio_region=_get_env("MINIO_REGION", "us-east-1"),
            gemini_api_key=_get_env("GEMINI_API_KEY"),
            model_name=_get_env("MODEL_NAME", "gemini-2.5-pro"),
            github_api_url=_get_env("GITHUB_API_URL", "https://api.github.com"),
            workspace_root=_get_env("WORKSPACE_ROOT", "/var/tmp"),
            secrets_environment=_get_env("SECRETS_ENVIRONMENT", "dev"),
            secrets_path=_get_env("SECRETS_PATH", "/"),
            state_object_name=_get_env("STATE_OBJECT_NAME", "terraform.tfstate"),
            state_local_path=_get_env("STATE_LOCAL_PATH", "terraform.tfstate"),
            git_bin=_get_env("GIT_BIN", "git"),
            terraform_bin=_get_env("TERRAFORM_BIN", "terraform"),
            command_timeout=timeout,
            branch_lookup=branch_lookup,
            git_author_name=_get_env("GIT_AUTHOR_NAME", "Prism"),
            git_author_email=_get_env("GIT_AUTHOR_EMAIL", "prism@localhost"),
            log_level=log_level,
        )
