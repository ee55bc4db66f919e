"""
OpenAI-powered expense extraction.

Prompts a chat model to list every purchase mentioned in a (Spanish) voice note
transcription as a strict JSON array. The reply is parsed with
`parse_expense_json`; a malformed reply is an error, not a retry target.
"""

from __future__ import annotations

import logging
from typing import Any, List

from openai import APIError, APITimeoutError, OpenAI

from expense_model import RawExpense
from extraction_provider import ExtractionResponseError, parse_expense_json
from shared.observability.privacy import hash_payload, text_fingerprint

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an expense parser. Extract ALL expenses from the Spanish text. There may be one or multiple expenses.

For EACH expense, extract:
- unit_price: the price per unit (decimal number)
- quantity: the quantity purchased (decimal number, use 1.0 if not specified)
- unit: the unit of measurement (string: "kg", "litro", "pasaje", "u" for generic units). Default to "u" if not specified
- description: short product description (string)

Keep the expenses in the order they are mentioned.

Respond ONLY with a valid JSON array of expenses in this exact format:
[
  {"unit_price": 0.0, "quantity": 0.0, "unit": "u", "description": ""},
  {"unit_price": 0.0, "quantity": 0.0, "unit": "kg", "description": ""}
]

If there's only one expense, still return an array with one element.
If the text mentions no purchase, return an empty array: []
Return JSON only, with no commentary."""

USER_PROMPT_TEMPLATE = 'Text: "{transcription}"'


class OpenAIExtractionProvider:
    """ChatGPT-backed extractor returning RawExpense records in mention order."""

    name = "openai"

    def __init__(self, settings: Any | None = None):
        self._settings = settings
        if settings and settings.openai:
            self._client = OpenAI(
                api_key=settings.openai.api_key,
                base_url=settings.openai.api_base,
                timeout=settings.timeout_seconds,
                max_retries=0,
            )
            self._model = settings.openai.model
            self._temperature = settings.temperature
            self._max_tokens = settings.max_output_tokens
        else:
            self._client = None
            self._model = None
            self._temperature = 0.1
            self._max_tokens = 1024

    def extract(self, text: str) -> List[RawExpense]:
        if not self._client:
            raise RuntimeError("OpenAI client not configured. Check OPENAI_API_KEY, OPENAI_MODEL, OPENAI_API_BASE.")

        user_prompt = USER_PROMPT_TEMPLATE.format(transcription=text)
        logger.info(
            {
                "event": "openai_extraction_request",
                "provider": self.name,
                "model": self._model,
                "prompt_hash": hash_payload({"system": SYSTEM_PROMPT, "user": user_prompt}),
                "transcript": text_fingerprint(text),
            }
        )

        try:
            response = self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=self._temperature,
                max_tokens=self._max_tokens,
            )
        except (APIError, APITimeoutError) as exc:
            logger.error(
                {
                    "event": "openai_extraction_error",
                    "provider": self.name,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                }
            )
            raise

        if not response.choices:
            raise ExtractionResponseError("No response choices from extraction model")

        content = response.choices[0].message.content
        try:
            expenses = parse_expense_json(content)
        except ExtractionResponseError as exc:
            logger.error(
                {
                    "event": "openai_extraction_parse_error",
                    "provider": self.name,
                    "error_message": str(exc),
                    "response_hash": hash_payload(content),
                }
            )
            raise

        logger.info(
            {
                "event": "openai_extraction_response",
                "provider": self.name,
                "expense_count": len(expenses),
                "response_hash": hash_payload(content),
            }
        )
        return expenses
