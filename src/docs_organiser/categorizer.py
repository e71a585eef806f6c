"""
Document Categorization Module
==============================

This module turns extracted document text into a validated `AnalysisResult`:
a destination category taken from the category registry, a clean file title
and a confidence score.

The engine keeps prompts inside the model's context window (truncating the
system prompt, summarizing or truncating oversized documents), validates the
model's JSON reply strictly, and feeds validation errors back to the model in
a short corrective retry loop. When every attempt fails it still returns a
fallback result, together with the error that caused it.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Sequence

import openai
import structlog

from .config import Settings
from .context_manager import ContextManager, TruncationStrategy
from .llm import OpenAIChatMixin, ServiceError
from .registry import CategoryRegistry
from .utils import Deadline, clean_json_reply, sanitize_category, sanitize_filename

log = structlog.get_logger(__name__)

SYSTEM_PROMPT_TEMPLATE = """
You are an intelligent file organization assistant. Analyze the document text and return a SINGLE JSON object.
Required format: {{"category": "Specific_Category_Name", "title": "Clean_Filename_No_Ext", "confidence_score": 0.0-1.0}}
Strictly choose category from: {categories}
Nested paths like "Parent/Child" are valid if they exist in the list above.
Required confidence_score: a float between 0.0 and 1.0.
Do NOT return extra fields. Do NOT return markdown. Do NOT return extra text.
""".strip()

USER_PROMPT_TEMPLATE = "Document text snippet:\n{text}"

CORRECTION_ACK = "Previous attempt failed validation."
CORRECTION_PROMPT_TEMPLATE = (
    "Your previous response was invalid: {error}. "
    "Please provide a strictly valid JSON object following the schema."
)

SUMMARY_SYSTEM_PROMPT = (
    "You are a concise summarization assistant. "
    "Provide a brief but information-dense summary."
)
SUMMARY_PROMPT_TEMPLATE = (
    "Summarize the following document part ({index}/{total}). "
    "Keep key technical details, names, and core topics relevant for categorization:\n\n{text}"
)

CLASSIFY_TEMPERATURE = 0.1
SUMMARY_TEMPERATURE = 0.1

# Chunks leave a fifth of the content budget for the summarization prompt.
SUMMARY_CHUNK_PCT = 0.8

REQUIRED_FIELDS = ("category", "title", "confidence_score")

RETRYABLE_ERRORS = (openai.APIError, ServiceError, ValueError)


class ValidationError(ValueError):
    """The model's reply does not match the required output schema."""


class SummarizationError(RuntimeError):
    """Map-reduce summarization could not bring the text under its limit."""


class CategorizationError(RuntimeError):
    """Every categorization attempt failed; the fallback result was used."""


@dataclass(frozen=True)
class AnalysisResult:
    category: str
    title: str
    confidence_score: float


def _reject_constant(name: str):
    raise ValidationError(f"invalid JSON number: {name}")


def parse_and_validate(raw: str, registry: CategoryRegistry) -> AnalysisResult:
    """
    Parse and strictly validate a classification reply.

    The reply must decode to a JSON object with exactly the three required
    fields, nothing after the closing brace, a non-empty category that is a
    registry member (case-sensitive), a non-empty title and a positive score.
    The returned category and title are sanitized for filesystem use.
    """
    content = clean_json_reply(raw)
    if not content:
        raise ValidationError("empty response")

    try:
        data = json.loads(content, parse_constant=_reject_constant)
    except json.JSONDecodeError as e:
        raise ValidationError(f"invalid JSON or unexpected fields: {e}") from e

    if not isinstance(data, dict):
        raise ValidationError("response is not a JSON object")

    unknown = sorted(set(data) - set(REQUIRED_FIELDS))
    if unknown:
        raise ValidationError(f"unexpected fields: {', '.join(unknown)}")
    missing = [name for name in REQUIRED_FIELDS if name not in data]
    if missing:
        raise ValidationError(f"missing required field: {', '.join(missing)}")

    category = data["category"]
    title = data["title"]
    score = data["confidence_score"]
    if not isinstance(category, str):
        raise ValidationError("category must be a string")
    if not isinstance(title, str):
        raise ValidationError("title must be a string")
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        raise ValidationError("confidence_score must be a number")
    try:
        score = float(score)
    except OverflowError as e:
        raise ValidationError("confidence_score is out of range") from e
    if not math.isfinite(score):
        raise ValidationError("confidence_score must be a finite number")

    if category == "":
        raise ValidationError("missing required field: category")
    if title == "":
        raise ValidationError("missing required field: title")
    if score <= 0:
        raise ValidationError(f"missing or invalid confidence_score: {score}")
    if not registry.is_member(category):
        raise ValidationError(
            f"invalid category: {category} (must be one of {list(registry.categories)})"
        )

    return AnalysisResult(
        category=sanitize_category(category),
        title=sanitize_filename(title),
        confidence_score=score,
    )


def next_conversation(
    base: Sequence[dict[str, str]], last_error: Exception | None
) -> list[dict[str, str]]:
    """
    Build the message list for the next attempt.

    The first attempt sends ``base`` as is; later attempts append the model's
    failed turn and a user message quoting the validation error.
    """
    messages = list(base)
    if last_error is not None:
        messages.append({"role": "assistant", "content": CORRECTION_ACK})
        messages.append(
            {"role": "user", "content": CORRECTION_PROMPT_TEMPLATE.format(error=last_error)}
        )
    return messages


class CategorizationEngine(OpenAIChatMixin):
    """
    Categorization engine backed by an OpenAI-compatible chat endpoint.
    """

    def __init__(
        self,
        settings: Settings,
        context_manager: ContextManager,
        registry: CategoryRegistry,
    ):
        self.settings = settings
        self.context_manager = context_manager
        self.registry = registry

    def build_system_prompt(self) -> str:
        prompt = SYSTEM_PROMPT_TEMPLATE.format(categories=", ".join(self.registry.categories))
        budget = self.context_manager.get_budgets().system
        return self.context_manager.truncate(prompt, budget, TruncationStrategy.SLIDING_WINDOW)

    def fallback_result(self) -> AnalysisResult:
        return AnalysisResult(
            category=self.registry.fallback,
            title=self.settings.FALLBACK_TITLE,
            confidence_score=0.0,
        )

    def fit_content(self, text: str, deadline: Deadline | None = None) -> str:
        """Bring document text within the content budget."""
        content_budget = self.context_manager.get_budgets().content
        token_count = self.context_manager.count_tokens(text)
        if token_count <= content_budget:
            return text

        log.info(
            "Document exceeds content budget; summarizing",
            tokens=token_count,
            content_budget=content_budget,
        )
        try:
            return self.summarize(text, content_budget, deadline)
        except (SummarizationError, ServiceError, openai.APIError) as e:
            log.warning(
                "Summarization failed; falling back to middle extraction",
                error=str(e),
            )
            if deadline is not None:
                deadline.check()
            return self.context_manager.truncate(
                text, content_budget, TruncationStrategy.MIDDLE_EXTRACTION
            )

    def categorize(
        self, text: str, deadline: Deadline | None = None
    ) -> tuple[AnalysisResult, CategorizationError | None]:
        """
        Categorize document text, returning (result, error).

        When ``error`` is not None every attempt failed and ``result`` is the
        fallback; callers must treat the error as the authoritative outcome.
        Cancellation and deadline expiry are raised rather than retried.
        """
        deadline = deadline or Deadline()
        system_prompt = self.build_system_prompt()
        content = self.fit_content(text, deadline)
        base = (
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": USER_PROMPT_TEMPLATE.format(text=content)},
        )

        last_error: Exception | None = None
        max_attempts = self.settings.MAX_ATTEMPTS
        for attempt in range(1, max_attempts + 1):
            messages = next_conversation(base, last_error)
            try:
                reply = self._chat(
                    messages,
                    temperature=CLASSIFY_TEMPERATURE,
                    timeout=deadline.timeout(self.settings.REQUEST_TIMEOUT),
                )
                result = parse_and_validate(reply, self.registry)
            except RETRYABLE_ERRORS as e:
                # A timeout caused by our own deadline is not worth another attempt.
                deadline.check()
                last_error = e
                log.warning(
                    "Categorization attempt failed",
                    attempt=attempt,
                    max_attempts=max_attempts,
                    error=str(e),
                )
                continue
            if attempt > 1:
                log.info("Categorization succeeded after correction", attempt=attempt)
            return result, None

        error = CategorizationError(
            f"failed to get valid structured output after {max_attempts} attempts: {last_error}"
        )
        error.__cause__ = last_error
        return self.fallback_result(), error

    def summarize(
        self,
        text: str,
        limit: int,
        deadline: Deadline | None = None,
        _round: int = 1,
    ) -> str:
        """
        Reduce ``text`` below ``limit`` tokens by map-reduce summarization.

        Each round chunks the text, summarizes every chunk and joins the
        summaries. Rounds repeat while the result is still too long, up to
        ``SUMMARY_MAX_ROUNDS``.
        """
        deadline = deadline or Deadline()
        if self.context_manager.count_tokens(text) <= limit:
            return text
        max_rounds = self.settings.SUMMARY_MAX_ROUNDS
        if _round > max_rounds:
            raise SummarizationError(
                f"summary still exceeds {limit} tokens after {max_rounds} rounds"
            )

        content_budget = self.context_manager.get_budgets().content
        chunk_size = max(1, int(content_budget * SUMMARY_CHUNK_PCT))
        chunks = self.context_manager.chunk(text, chunk_size)

        summaries = []
        for index, chunk in enumerate(chunks, start=1):
            try:
                summaries.append(self._summarize_chunk(chunk, index, len(chunks), deadline))
            except (ServiceError, openai.APIError) as e:
                raise SummarizationError(
                    f"failed to summarize chunk {index}/{len(chunks)}: {e}"
                ) from e

        combined = "\n\n".join(summaries)
        log.debug(
            "Summarization round complete",
            round=_round,
            chunks=len(chunks),
            tokens=self.context_manager.count_tokens(combined),
            limit=limit,
        )
        return self.summarize(combined, limit, deadline, _round + 1)

    def _summarize_chunk(self, text: str, index: int, total: int, deadline: Deadline) -> str:
        messages = [
            {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": SUMMARY_PROMPT_TEMPLATE.format(index=index, total=total, text=text),
            },
        ]
        reply = self._chat(
            messages,
            temperature=SUMMARY_TEMPERATURE,
            timeout=deadline.timeout(self.settings.REQUEST_TIMEOUT),
        )
        return reply.strip()
