import logging
import os
from typing import Dict, MutableMapping, Optional

from prism.errors import SecretFetchError, SecretInjectionError

logger = logging.getLogger(__name__)


class SecretInjector:
    """
    Fetches the vault's secret set and places it into an environment mapping.

    The workflow injects into its own per-run dict, which becomes the planning
    tool's environment overlay. Passing no target writes into os.environ,
    which is process-wide and must not race with other workflow runs.
    """

    def __init__(self, vault):
        self.vault = vault

    def fetch(self, environment: str, project_id: str, secret_path: str) -> Dict[str, str]:
        response = self.vault.list_secrets(environment, project_id, secret_path)
        if response.status_code != 200 or response.error:
            raise SecretFetchError(response.error, response.status_code)
        logger.info("Fetched %d secrets from vault (%s:%s)", len(response.values), environment, secret_path)
        return dict(response.values)

    def inject(self, environment: str, project_id: str, secret_path: str, target: Optional[MutableMapping[str, str]] = None) -> int:
        secrets = self.fetch(environment, project_id, secret_path)
        if target is None:
            target = os.environ

        for key, value in secrets.items():
            if not key or "=" in key or "\x00" in key or "\x00" in value:
                raise SecretInjectionError(key, "invalid environment variable name or value")
            logger.info("Injecting secret into environment: %s", key)
            try:
                target[key] = value
            except (ValueError, TypeError, OSError) as e:
                raise SecretInjectionError(key, str(e))
        return len(secrets)
