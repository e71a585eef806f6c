"""
Shared LLM helpers.

This module centralizes the OpenAI-compatible chat completion call so the
classification and summarization prompts reuse the same request shape and
error reporting.
"""

from __future__ import annotations

import openai


class ServiceError(RuntimeError):
    """The classification service answered, but not with anything usable."""


class OpenAIChatMixin:
    """
    Mixin providing an OpenAI-compatible chat completion call.

    The mixin expects ``self.settings`` to expose ``MODEL_NAME`` and
    ``REQUEST_TIMEOUT``. Transport failures and non-200 statuses surface as
    ``openai.APIError`` subclasses; the caller decides whether to retry.
    """

    def _create_completion(self, **kwargs):
        """Call the OpenAI-compatible chat completion API."""
        return openai.chat.completions.create(**kwargs)

    def _chat(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        timeout: float | None = None,
    ) -> str:
        """Send one non-streaming request and return the first choice's text."""
        response = self._create_completion(
            model=self.settings.MODEL_NAME,
            messages=messages,
            stream=False,
            temperature=temperature,
            timeout=self.settings.REQUEST_TIMEOUT if timeout is None else timeout,
        )
        choices = getattr(response, "choices", None) or []
        if not choices:
            raise ServiceError("no choices in response")
        return choices[0].message.content or ""
