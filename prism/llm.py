import json
import logging
import time
from typing import Callable, List, Optional

import google.generativeai as genai
from pydantic import ValidationError

from prism.config import Settings
from prism.errors import ModelError
from prism.prompts.terraform import get_modification_prompt
from prism.schemas import FileChange, ModificationSet

logger = logging.getLogger(__name__)

MAX_API_ATTEMPTS = 3
BUSY_MARKERS = ("429", "503")


class ModelClient:
    """Asks Gemini for a set of Terraform file modifications."""

    def __init__(self, model, max_attempts: int = MAX_API_ATTEMPTS, retry_delay: float = 5.0,
                 sleep: Callable[[float], None] = time.sleep):
        self.model = model
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings) -> "ModelClient":
        if settings.gemini_api_key:
            genai.configure(api_key=settings.gemini_api_key)
        return cls(genai.GenerativeModel(settings.model_name))

    def _generate(self, prompt: str) -> str:
        attempts = 0
        while True:
            try:
                response = self.model.generate_content(prompt, generation_config={"response_mime_type": "application/json"})
                return response.text
            except Exception as e:
                error_str = str(e)
                attempts += 1
                # API busy: back off and try again, anything else is fatal
                if any(code in error_str for code in BUSY_MARKERS) and attempts < self.max_attempts:
                    logger.warning("Model API busy (attempt %d/%d). Retrying...", attempts, self.max_attempts)
                    self.sleep(self.retry_delay)
                    continue
                raise ModelError(error_str, _status_from(error_str))

    def generate_file_modifications(self, user_message: str, current_files: List[FileChange]) -> List[FileChange]:
        prompt = get_modification_prompt(user_message, current_files)
        text = self._generate(prompt)
        return parse_modifications(text)


def _status_from(error_str: str) -> Optional[int]:
    for code in BUSY_MARKERS:
        if code in error_str:
            return int(code)
    return None


def strip_fences(text: str) -> str:
    text = (text or "").strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


def parse_modifications(text: str) -> List[FileChange]:
    cleaned = strip_fences(text)
    if not cleaned:
        raise ModelError("no response from LLM")
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ModelError(f"failed to parse LLM response: {e}")
    try:
        return ModificationSet.model_validate(data).files
    except ValidationError as e:
        raise ModelError(f"LLM response has unexpected shape: {e.error_count()} validation error(s)")
