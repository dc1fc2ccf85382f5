from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from typing import Any

import anthropic

from podcast_digest.errors import SummaryGenerationError

LOGGER = logging.getLogger("podcast_digest.summary_generator")

DEFAULT_MODEL = "claude-3-7-sonnet-20250219"
DEFAULT_MAX_TOKENS = 1024

SUMMARY_SYSTEM_PROMPT = """You are an expert podcast analyst and summarizer with deep experience in content curation.
Your summaries are known for being insightful, well-structured, and highlighting the most valuable information.
You excel at identifying key themes, important quotes, and actionable takeaways from conversations."""

SUMMARY_USER_TEMPLATE = """Analyze and summarize the following podcast transcript in a clear, structured format.
Please organize your summary in markdown with these sections:
1. Overview (2-3 sentences about the episode)
2. Key Topics (bullet points of main subjects discussed)
3. Main Insights (3-5 key takeaways)
4. Notable Quotes (1-3 standout quotes)
5. Resources Mentioned (any books, articles, or resources discussed)

Transcript:
{transcript}"""


class SummaryGenerator:
    def __init__(
        self,
        *,
        api_key: str | None,
        model: str = DEFAULT_MODEL,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        timeout_seconds: float = 600.0,
        client: Any | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._max_tokens = max_tokens
        self._timeout_seconds = timeout_seconds
        self._client = client

    def stream(self, transcript: str) -> Iterator[str]:
        """
        Yield summary text chunks as the model emits them.

        The iterator is finite and single-use; it ends when the model's stream
        closes. Provider failures surface as `SummaryGenerationError`.
        """
        if not transcript.strip():
            raise SummaryGenerationError("Cannot summarize an empty transcript.")

        client = self._get_client()
        LOGGER.info(
            "summary generation_started model=%s transcript_chars=%s",
            self._model,
            len(transcript),
        )
        chunk_count = 0
        try:
            with client.messages.stream(
                model=self._model,
                max_tokens=self._max_tokens,
                system=SUMMARY_SYSTEM_PROMPT,
                messages=[
                    {
                        "role": "user",
                        "content": SUMMARY_USER_TEMPLATE.format(transcript=transcript),
                    }
                ],
            ) as stream:
                for text in stream.text_stream:
                    if not text:
                        continue
                    chunk_count += 1
                    yield text
        except anthropic.APIError as exc:
            LOGGER.warning(
                "summary generation_failed model=%s chunks=%s",
                self._model,
                chunk_count,
                exc_info=True,
            )
            raise SummaryGenerationError(f"Summary generation failed: {exc}") from exc

        LOGGER.info("summary generation_finished model=%s chunks=%s", self._model, chunk_count)

    def generate(self, transcript: str, on_chunk: Callable[[str], None]) -> str:
        parts: list[str] = []
        for chunk in self.stream(transcript):
            parts.append(chunk)
            on_chunk(chunk)
        return "".join(parts)

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        if self._api_key is None:
            raise SummaryGenerationError(
                "Anthropic API key is missing. Set PODCAST_DIGEST_ANTHROPIC_API_KEY."
            )
        self._client = anthropic.Anthropic(api_key=self._api_key, timeout=self._timeout_seconds)
        return self._client
