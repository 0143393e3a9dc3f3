import json
import logging
from typing import Dict, List, Optional

from pydantic import JsonValue

from prism.errors import ExternalToolError, PlanDecodeError, PlanExecutionError
from prism.process import CommandResult, CommandRunner

logger = logging.getLogger(__name__)

PLAN_FILE = "tfplan"


class TerraformCLI:
    """PlanningTool backed by the `terraform` executable."""

    def __init__(self, runner: CommandRunner, terraform_bin: str = "terraform"):
        self.runner = runner
        self.terraform_bin = terraform_bin

    def _run(self, stage: str, args: List[str], workspace: str, env: Optional[Dict[str, str]]) -> CommandResult:
        overlay = {"TF_IN_AUTOMATION": "1"}
        overlay.update(env or {})
        cmd = [self.terraform_bin] + args
        try:
            result = self.runner.run(cmd, cwd=workspace, env_overlay=overlay)
        except ExternalToolError as e:
            raise PlanExecutionError(stage, command=e.command, output=f"{e.summary}\n{e.output}".strip())
        if not result.ok:
            raise PlanExecutionError(stage, command=result.args, output=result.output, returncode=result.returncode)
        return result

    def init(self, workspace: str, env: Optional[Dict[str, str]] = None) -> None:
        self._run("init", ["init", "-upgrade", "-input=false", "-no-color"], workspace, env)

    def plan(self, workspace: str, plan_file: str = PLAN_FILE, env: Optional[Dict[str, str]] = None) -> str:
        return self._run("plan", ["plan", "-no-color", "-input=false", f"-out={plan_file}"], workspace, env).stdout

    def show_json(self, workspace: str, plan_file: str = PLAN_FILE, env: Optional[Dict[str, str]] = None) -> str:
        return self._run("show", ["show", "-json", plan_file], workspace, env).stdout


class PlanExecutor:
    def __init__(self, tool):
        self.tool = tool

    def plan(self, workspace: str, env: Optional[Dict[str, str]] = None) -> JsonValue:
        """
        init -> plan -> show -json, all against `workspace`.

        `env` is the per-run overlay (vault secrets); the process environment
        is left alone. Any stage failing raises PlanExecutionError; show output
        that is not JSON raises PlanDecodeError.
        """
        logger.info("Running terraform init")
        self.tool.init(workspace, env=env)

        logger.info("Running terraform plan")
        self.tool.plan(workspace, plan_file=PLAN_FILE, env=env)

        logger.info("Converting terraform plan to JSON")
        raw = self.tool.show_json(workspace, plan_file=PLAN_FILE, env=env)
        return decode_plan(raw)


def decode_plan(raw: str) -> JsonValue:
    if not raw or not raw.strip():
        raise PlanDecodeError("empty output", raw or "")
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise PlanDecodeError(str(e), raw)
