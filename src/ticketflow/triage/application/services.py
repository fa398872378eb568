"""
Triage Application Services
===========================

Triage classifier adapter.

Wraps the LLM call, tolerates answers wrapped in prose or code fences, and
validates the result. Any failure (timeout, transport error, unparseable or
schema-invalid answer) resolves to the deterministic fallback instead of an
exception, so the pipeline always proceeds.
"""

import asyncio
import json
import re
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ticketflow.config import GENERAL_SUPPORT_SKILL, Priority
from ticketflow.infrastructure.llm import ILLMClient
from ticketflow.shared.infrastructure.logging import get_logger
from ticketflow.triage.domain import ClassificationPromptBuilder, TriageResult

logger = get_logger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_JSON_STRING = r'"((?:[^"\\]|\\.)*)"'
_PRIORITY_FIELD = re.compile(r'"priority"\s*:\s*"(low|medium|high)"', re.IGNORECASE)
_NOTES_FIELD = re.compile(r'"(?:notes|helpfulNotes)"\s*:\s*' + _JSON_STRING, re.IGNORECASE)
_SUMMARY_FIELD = re.compile(r'"summary"\s*:\s*' + _JSON_STRING, re.IGNORECASE)
_SKILLS_FIELD = re.compile(r'"(?:skills|relatedSkills)"\s*:\s*\[([^\]]*)\]', re.IGNORECASE)

_PRIORITIES = {p.value for p in Priority}


def _loads_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def _unescape(value: str) -> str:
    try:
        return json.loads(f'"{value}"')
    except json.JSONDecodeError:
        return value


def parse_direct(raw: str) -> Optional[Dict[str, Any]]:
    return _loads_object(raw.strip())


def parse_fenced_block(raw: str) -> Optional[Dict[str, Any]]:
    match = _FENCED_BLOCK.search(raw)
    if match is None:
        return None
    return _loads_object(match.group(1).strip())


def parse_brace_substring(raw: str) -> Optional[Dict[str, Any]]:
    start = raw.find("{")
    end = raw.rfind("}")
    if start == -1 or end <= start:
        return None
    return _loads_object(raw[start:end + 1])


def parse_fields(raw: str) -> Optional[Dict[str, Any]]:
    """
    Last resort: pull each field out with a regex.

    Returns only the fields found; validation decides if that is enough.
    """
    data: Dict[str, Any] = {}

    priority = _PRIORITY_FIELD.search(raw)
    if priority:
        data["priority"] = priority.group(1)

    notes = _NOTES_FIELD.search(raw)
    if notes:
        data["notes"] = _unescape(notes.group(1))

    summary = _SUMMARY_FIELD.search(raw)
    if summary:
        data["summary"] = _unescape(summary.group(1))

    skills = _SKILLS_FIELD.search(raw)
    if skills:
        data["skills"] = [_unescape(s) for s in re.findall(_JSON_STRING, skills.group(1))]

    return data or None


# Progressively looser, first hit wins
EXTRACTION_STRATEGIES: Sequence[Tuple[str, Callable[[str], Optional[Dict[str, Any]]]]] = (
    ("direct", parse_direct),
    ("fenced_block", parse_fenced_block),
    ("brace_substring", parse_brace_substring),
    ("field_regex", parse_fields),
)


def _first_present(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def validate_payload(data: Dict[str, Any]) -> Optional[TriageResult]:
    """
    Check a parsed answer and normalize it.

    Returns None when priority is not low/medium/high, notes is not a
    string or skills is not a list of strings.
    """
    priority = data.get("priority")
    if not isinstance(priority, str) or priority.strip().lower() not in _PRIORITIES:
        return None

    notes = _first_present(data, "notes", "helpfulNotes")
    if not isinstance(notes, str):
        return None

    skills = _first_present(data, "skills", "relatedSkills")
    if not isinstance(skills, list) or not all(isinstance(s, str) for s in skills):
        return None

    normalized: List[str] = []
    for skill in skills:
        skill = skill.strip()
        if skill and skill.lower() not in (s.lower() for s in normalized):
            normalized.append(skill)

    summary = data.get("summary")
    return TriageResult(
        priority=Priority(priority.strip().lower()),
        notes=notes.strip(),
        skills=normalized or [GENERAL_SUPPORT_SKILL],
        summary=summary.strip() if isinstance(summary, str) else "",
    )


class TriageClassifierAdapter:
    """
    Classifies tickets with an LLM.

    ``classify`` never raises: every failure path returns
    ``TriageResult.fallback``.
    """

    def __init__(
        self,
        llm_client: ILLMClient,
        timeout_seconds: float = 20.0,
        temperature: float = 0.3,
        max_tokens: int = 800,
    ):
        self._llm = llm_client
        self._timeout = timeout_seconds
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def classify(
        self,
        title: str,
        description: str,
        ticket_id: Optional[str] = None
    ) -> TriageResult:
        """
        Classify a ticket by priority and required skills.

        Args:
            title: Ticket title
            description: Ticket description
            ticket_id: Optional ticket ID for logging

        Returns:
            TriageResult, possibly the fallback
        """
        start_time = time.perf_counter()
        messages = ClassificationPromptBuilder.build_messages(title, description)

        try:
            response = await asyncio.wait_for(
                self._llm.chat_completion(
                    messages=messages,
                    temperature=self._temperature,
                    max_tokens=self._max_tokens,
                    operation="triage"
                ),
                timeout=self._timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Triage classifier timed out, using fallback",
                extra={"ticket_id": ticket_id, "timeout_seconds": self._timeout}
            )
            return TriageResult.fallback(title, description)
        except Exception as e:
            logger.warning(
                "Triage classifier failed, using fallback",
                extra={"ticket_id": ticket_id, "error": str(e), "error_type": type(e).__name__}
            )
            return TriageResult.fallback(title, description)

        raw = response.content if isinstance(response.content, str) else ""
        result = self.parse(raw, ticket_id=ticket_id)
        if result is None:
            logger.warning(
                "Triage answer unusable, using fallback",
                extra={"ticket_id": ticket_id, "raw_preview": raw[:200]}
            )
            return TriageResult.fallback(title, description)

        logger.info(
            "Ticket triaged",
            extra={
                "ticket_id": ticket_id,
                "priority": result.priority.value,
                "skills": result.skills,
                "latency_ms": int((time.perf_counter() - start_time) * 1000),
            }
        )
        return result

    @staticmethod
    def parse(raw: str, ticket_id: Optional[str] = None) -> Optional[TriageResult]:
        """Run the extraction strategies in order and validate the first payload found."""
        if not raw.strip():
            return None
        for strategy, extract in EXTRACTION_STRATEGIES:
            data = extract(raw)
            if data is None:
                continue
            logger.debug(
                "Triage answer extracted",
                extra={"ticket_id": ticket_id, "strategy": strategy}
            )
            return validate_payload(data)
        return None
