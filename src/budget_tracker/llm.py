"""Hosted classification adapters.

Defines the ``ClassifierAdapter`` protocol for asking a hosted language
model which category a single transaction belongs to, plus three
implementations:

- AnthropicAdapter: calls the Anthropic Messages API via httpx.
- OpenAIAdapter: calls an OpenAI-compatible Chat Completions API via httpx.
- NullAdapter: always reports "unavailable" (for --no-llm mode).

Adapters never raise for upstream problems.  Missing credentials, network
errors, timeouts, HTTP errors and unparseable replies are logged and
reported as ``None``; the classifier then takes its keyword fallback.
The returned dict is untrusted: the classifier validates the category
against the fixed set and clamps the confidence.

This module depends only on the standard library and httpx.  It has no
internal imports -- the classifier passes plain values, not model objects.
"""

from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)

ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_API_VERSION = "2023-06-01"
OPENAI_API_URL = "https://api.openai.com/v1/chat/completions"

TEMPERATURE = 0.1
MAX_TOKENS = 150


class ClassifierAdapter(Protocol):
    """Protocol for hosted single-transaction categorization.

    Implementations return ``None`` on any failure rather than raising.
    """

    def classify(
        self,
        merchant: str,
        amount: Decimal,
        description: str | None,
        categories: list[str],
    ) -> dict | None:
        """Ask the hosted model for a category.

        Args:
            merchant: Merchant name as entered.
            amount: Amount in major currency units (dollars).
            description: Optional free-text description.
            categories: The allowed category labels.

        Returns:
            A dict with keys ``category`` (str), ``confidence`` (float) and
            ``reasoning`` (str), or None if the service was unavailable or
            its reply could not be parsed.
        """
        ...


def _build_system_prompt(categories: list[str]) -> str:
    return (
        "You are a financial categorization expert. Your job is to categorize "
        "transactions based on merchant name, amount, and description.\n"
        "\n"
        f"Available categories: {', '.join(categories)}\n"
        "\n"
        "Respond with a JSON object containing:\n"
        "- category: one of the available categories\n"
        "- confidence: a number between 0 and 1 representing your confidence\n"
        "- reasoning: brief explanation of your choice\n"
        "\n"
        "Be consistent with similar merchants. Consider typical spending patterns."
    )


def _build_prompt(merchant: str, amount: Decimal, description: str | None) -> str:
    """Construct the per-transaction user message.

    Example::

        Categorize this transaction:
        Merchant: Blue Bottle
        Amount: $4.50
        Description: oat latte
    """
    prompt = (
        "Categorize this transaction:\n"
        f"Merchant: {merchant}\n"
        f"Amount: ${amount:.2f}"
    )
    if description:
        prompt += f"\nDescription: {description}"
    return prompt


def _parse_response(text: str) -> dict | None:
    """Extract and validate the JSON object from the model's reply.

    The model may wrap the JSON in code fences or surround it with prose,
    so the text between the first ``{`` and the last ``}`` is parsed.

    Returns:
        ``{"category": str, "confidence": float, "reasoning": str}``, or
        None if no object is found, it is not valid JSON, ``category`` is
        missing, or ``confidence`` is missing or not a number.
    """
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        logger.warning("Classifier response does not contain a JSON object")
        return None

    try:
        result = json.loads(text[start : end + 1])
    except json.JSONDecodeError as exc:
        logger.warning("Failed to parse JSON from classifier response: %s", exc)
        return None

    if not isinstance(result, dict):
        logger.warning("Classifier response JSON is not an object")
        return None
    if "category" not in result:
        logger.warning("Classifier response is missing 'category': %s", result)
        return None

    confidence = result.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        logger.warning("Classifier response has no numeric confidence: %r", confidence)
        return None

    return {
        "category": str(result["category"]),
        "confidence": float(confidence),
        "reasoning": str(result.get("reasoning") or ""),
    }


def _post(url: str, body: dict, headers: dict, timeout: float) -> dict | None:
    """POST *body* as JSON and return the decoded reply, or None on failure."""
    try:
        response = httpx.post(url, json=body, headers=headers, timeout=timeout)
        response.raise_for_status()
    except httpx.TimeoutException:
        logger.warning("Classifier request timed out after %.1fs", timeout)
        return None
    except httpx.HTTPStatusError as exc:
        logger.warning(
            "Classifier API returned HTTP %d: %s",
            exc.response.status_code,
            exc.response.text[:200],
        )
        return None
    except httpx.HTTPError as exc:
        logger.warning("Classifier request failed: %s", exc)
        return None

    try:
        body = response.json()
    except json.JSONDecodeError as exc:
        logger.warning("Classifier API returned invalid JSON: %s", exc)
        return None
    if not isinstance(body, dict):
        logger.warning("Classifier API returned an unexpected body")
        return None
    return body


class AnthropicAdapter:
    """Classifier adapter that calls the Anthropic Messages API via httpx.

    The API key is passed in explicitly; an empty key makes every call
    report "unavailable" without touching the network.

    Args:
        model: The Anthropic model identifier, e.g. "claude-sonnet-4-20250514".
        api_key: The API key.
        timeout: HTTP request timeout in seconds.  Default: 10.
        base_url: Endpoint override.  Default: the public Messages API.
    """

    def __init__(
        self,
        model: str,
        api_key: str,
        timeout: float = 10.0,
        base_url: str = "",
    ) -> None:
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        self.url = base_url or ANTHROPIC_API_URL

    def classify(
        self,
        merchant: str,
        amount: Decimal,
        description: str | None,
        categories: list[str],
    ) -> dict | None:
        if not self.api_key:
            logger.warning("Anthropic API key is not configured")
            return None

        request_body = {
            "model": self.model,
            "max_tokens": MAX_TOKENS,
            "temperature": TEMPERATURE,
            "system": _build_system_prompt(categories),
            "messages": [
                {
                    "role": "user",
                    "content": _build_prompt(merchant, amount, description),
                }
            ],
        }
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_API_VERSION,
            "content-type": "application/json",
        }

        body = _post(self.url, request_body, headers, self.timeout)
        if body is None:
            return None

        # Extract text from the Anthropic response format
        try:
            text_parts = [
                block["text"]
                for block in body.get("content", [])
                if block.get("type") == "text"
            ]
        except (KeyError, TypeError, AttributeError) as exc:
            logger.warning("Failed to extract text from classifier response: %s", exc)
            return None

        response_text = "\n".join(text_parts)
        if not response_text:
            logger.warning("Classifier response contained no text content")
            return None
        return _parse_response(response_text)


class OpenAIAdapter:
    """Classifier adapter for OpenAI-compatible Chat Completions endpoints.

    Args:
        model: Model identifier, e.g. "gpt-4o-mini".
        api_key: Bearer token.
        timeout: HTTP request timeout in seconds.  Default: 10.
        base_url: Full Chat Completions URL.  Default: the public OpenAI API.
    """

    def __init__(
        self,
        model: str,
        api_key: str,
        timeout: float = 10.0,
        base_url: str = "",
    ) -> None:
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        self.url = base_url or OPENAI_API_URL

    def classify(
        self,
        merchant: str,
        amount: Decimal,
        description: str | None,
        categories: list[str],
    ) -> dict | None:
        if not self.api_key:
            logger.warning("OpenAI API key is not configured")
            return None

        request_body = {
            "model": self.model,
            "temperature": TEMPERATURE,
            "max_tokens": MAX_TOKENS,
            "messages": [
                {"role": "system", "content": _build_system_prompt(categories)},
                {"role": "user", "content": _build_prompt(merchant, amount, description)},
            ],
        }
        headers = {
            "authorization": f"Bearer {self.api_key}",
            "content-type": "application/json",
        }

        body = _post(self.url, request_body, headers, self.timeout)
        if body is None:
            return None

        try:
            response_text = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            logger.warning("Failed to extract text from classifier response: %s", exc)
            return None

        if not response_text:
            logger.warning("Classifier response contained no text content")
            return None
        return _parse_response(str(response_text))


class NullAdapter:
    """No-op adapter for --no-llm mode.

    Always reports the hosted classifier as unavailable, so every
    transaction without a confident rule goes to the keyword fallback.
    """

    def classify(
        self,
        merchant: str,
        amount: Decimal,
        description: str | None,
        categories: list[str],
    ) -> dict | None:
        return None
