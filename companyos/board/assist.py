"""
LLM task assist for the board.

Sends one task to Gemini with an action-specific prompt and returns the
model's text:
  - summarize, prioritize, suggest_subtasks, estimate_due_date
  - improve_description, suggest_next_steps, categorize

Prompts are plain functions of the task so they can be tested without the
network. GeminiClient talks to the REST API directly with requests, either
in one response (generate) or as server-sent events (stream).
"""
import json
import logging
import re
from typing import Callable, Dict, Iterator, Optional

import requests

from .errors import AssistError, ValidationError
from .schema import Task, TaskPriority

logger = logging.getLogger(__name__)

API_URL = "https://generativelanguage.googleapis.com/v1beta/models"

SYSTEM_INSTRUCTION = (
    "You are a project management AI assistant. Provide concise, actionable "
    "responses for task management operations. Be specific and practical."
)

TEMPERATURE = 0.5
MAX_OUTPUT_TOKENS = 1024


def _description(task: Task) -> str:
    return task.description or "No description"


# One prompt per action; each takes the task and returns the user prompt
TASK_ACTION_PROMPTS: Dict[str, Callable[[Task], str]] = {
    "summarize": lambda t: (
        f"Summarize the following task concisely in 2-3 sentences:\n"
        f"Title: {t.title}\nDescription: {_description(t)}\n"
        f"Status: {t.status}\nPriority: {int(t.priority)}"
    ),
    "prioritize": lambda t: (
        f"Analyze this task and suggest a priority level "
        f"(1=Low, 2=Medium, 3=High, 4=Urgent) with brief reasoning:\n"
        f"Title: {t.title}\nDescription: {_description(t)}\n"
        f"Current Priority: {int(t.priority)}"
    ),
    "suggest_subtasks": lambda t: (
        f"Break down this task into 3-6 actionable subtasks. "
        f"Return each as a bullet point:\n"
        f"Title: {t.title}\nDescription: {_description(t)}"
    ),
    "estimate_due_date": lambda t: (
        f"Estimate how long this task would take for a mid-level developer. "
        f"Suggest a due date relative to today. Explain your reasoning briefly:\n"
        f"Title: {t.title}\nDescription: {_description(t)}\n"
        f"Priority: {int(t.priority)}"
    ),
    "improve_description": lambda t: (
        f"Rewrite and improve this task description to be clearer, more "
        f"actionable, and well-structured. Include acceptance criteria if "
        f"appropriate:\nTitle: {t.title}\nCurrent Description: {_description(t)}"
    ),
    "suggest_next_steps": lambda t: (
        f'This task is currently "{t.status}". Suggest the next 2-3 concrete '
        f"steps to move it forward:\n"
        f"Title: {t.title}\nDescription: {_description(t)}\nStatus: {t.status}"
    ),
    "categorize": lambda t: (
        f"Suggest appropriate tags or categories for this task (e.g., frontend, "
        f"backend, bug, feature, refactor, docs, devops, testing):\n"
        f"Title: {t.title}\nDescription: {_description(t)}"
    ),
}

ASSIST_ACTIONS = tuple(TASK_ACTION_PROMPTS)


def build_task_prompt(task: Task, action: str) -> str:
    """Render the prompt for an action. Unknown actions raise ValidationError."""
    builder = TASK_ACTION_PROMPTS.get(action)
    if builder is None:
        raise ValidationError(
            f"Unknown assist action '{action}'. Allowed: {', '.join(ASSIST_ACTIONS)}"
        )
    return builder(task)


_PRIORITY_NUMBER = re.compile(
    r"priority(?:\s+level)?\s*(?:of|is|to|should be|:|=)?\s*\**\s*([1-4])\b", re.I
)
_PRIORITY_WORD = re.compile(r"\b(low|medium|high|urgent)\b", re.I)


def parse_priority_suggestion(text: str) -> Optional[TaskPriority]:
    """
    Pull the suggested priority out of a 'prioritize' answer.

    Prefers an explicit "priority: 3" style number, then the first priority
    word (low/medium/high/urgent). Returns None when neither is present.
    """
    if not text:
        return None
    match = _PRIORITY_NUMBER.search(text)
    if match:
        return TaskPriority(int(match.group(1)))
    match = _PRIORITY_WORD.search(text)
    if match:
        return TaskPriority[match.group(1).upper()]
    return None


class GeminiClient:
    """Minimal Gemini REST client (generateContent + SSE streaming)."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash",
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.model = model
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "x-goog-api-key": api_key,
            "Content-Type": "application/json",
        })

    def _body(self, prompt: str) -> dict:
        return {
            "systemInstruction": {"parts": [{"text": SYSTEM_INSTRUCTION}]},
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": TEMPERATURE,
                "maxOutputTokens": MAX_OUTPUT_TOKENS,
            },
        }

    def _post(self, method: str, prompt: str, **kwargs) -> requests.Response:
        url = f"{API_URL}/{self.model}:{method}"
        try:
            response = self.session.post(
                url, json=self._body(prompt), timeout=self.timeout, **kwargs
            )
        except requests.RequestException as e:
            logger.warning(f"Gemini request failed: {e}")
            raise AssistError(f"AI service unreachable: {e}") from e
        if not response.ok:
            logger.warning(f"Gemini API error {response.status_code}: {response.text[:200]}")
            raise AssistError(f"AI service error (HTTP {response.status_code})")
        return response

    @staticmethod
    def _text(chunk: dict) -> str:
        """Concatenate the text parts of the first candidate."""
        candidates = chunk.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(p.get("text", "") for p in parts)

    def generate(self, prompt: str) -> str:
        """One-shot generation; returns the full text."""
        response = self._post("generateContent", prompt)
        try:
            data = response.json()
        except ValueError as e:
            raise AssistError("AI service returned an unreadable response") from e
        text = self._text(data)
        if not text:
            raise AssistError("AI service returned no text")
        return text

    def stream(self, prompt: str) -> Iterator[str]:
        """Yield text chunks as the model produces them."""
        response = self._post("streamGenerateContent", prompt, params={"alt": "sse"}, stream=True)
        try:
            for line in response.iter_lines(decode_unicode=True):
                if not line or not line.startswith("data:"):
                    continue
                payload = line[len("data:"):].strip()
                try:
                    chunk = json.loads(payload)
                except json.JSONDecodeError:
                    logger.debug(f"Skipping unreadable SSE chunk: {payload[:80]}")
                    continue
                text = self._text(chunk)
                if text:
                    yield text
        except requests.RequestException as e:
            logger.warning(f"Gemini stream interrupted: {e}")
            raise AssistError(f"AI stream interrupted: {e}") from e
        finally:
            response.close()

    def assist(self, task: Task, action: str) -> str:
        """Run one assist action on a task."""
        prompt = build_task_prompt(task, action)
        logger.info(f"Assist '{action}' for task {task.id}")
        return self.generate(prompt)

    def close(self) -> None:
        self.session.close()
