"""Importance scoring for fetched headlines.

Scores come from the LLM when a plugin allows it and a provider is
configured. Otherwise, or when the LLM fails, a rule-based score is used.
Both are scaled by the plugin's base weight and matching rule weights.
"""

import json
import logging
import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from topix.server.exceptions import LLMError
from topix.server.plugins.types import Headline, ImportanceConfig, ImportanceRule
from topix.server.services.llm_service import LLMService

logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 0.5

_RULE_PATTERN = re.compile(r"""^\s*(\w+)\s+(contains|equals)\s+(['"])(.*)\3\s*$""", re.IGNORECASE)
_NUMBER_PATTERN = re.compile(r"\d*\.?\d+")


def parse_rule(condition: str) -> Optional[Tuple[str, str, str]]:
    """Parse ``<field> contains '<text>'`` or ``<field> equals '<text>'``.

    Returns:
        (field, operator, text) or None if the condition is not understood
    """
    match = _RULE_PATTERN.match(condition or "")
    if not match:
        return None
    field, operator, _, text = match.groups()
    return field.lower(), operator.lower(), text


def rule_matches(rule: ImportanceRule, headline: Headline) -> bool:
    parsed = parse_rule(rule.condition)
    if parsed is None:
        logger.debug(f"Ignoring unparseable importance rule {rule.condition!r}")
        return False
    field, operator, text = parsed

    if hasattr(headline, field) and field != "metadata":
        value = getattr(headline, field)
    else:
        value = headline.metadata.get(field)
    if value is None:
        return False

    needle = text.lower()
    values = [str(v).lower() for v in value] if isinstance(value, (list, tuple, set)) else [str(value).lower()]
    if operator == "equals":
        return any(v == needle for v in values)
    return any(needle in v for v in values)


def parse_llm_score(text: str) -> Tuple[float, Optional[str]]:
    """Extract a score (and optional reason) from an LLM response.

    Accepts a JSON object with ``score`` and ``reason`` or a bare number.

    Raises:
        ValueError: If no score can be found
    """
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        try:
            data = json.loads(text[start : end + 1])
            if isinstance(data, dict) and "score" in data:
                return _clamp(float(data["score"])), data.get("reason")
        except (json.JSONDecodeError, TypeError, ValueError):
            pass

    match = _NUMBER_PATTERN.search(text)
    if not match:
        raise ValueError(f"No score in LLM response: {text[:100]!r}")
    return _clamp(float(match.group())), None


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _render_prompt(template: str, values: Dict[str, Any]) -> str:
    for key, value in values.items():
        template = template.replace("{" + key + "}", str(value))
    return template


class ImportanceScorer:
    """Scores headlines using the LLM with a rule-based fallback."""

    def __init__(
        self,
        llm: Optional[LLMService] = None,
        settings_provider: Optional[Callable[[], Dict[str, Any]]] = None,
    ):
        """Initialize importance scorer.

        Args:
            llm: Text generation service (None for rules only)
            settings_provider: Returns the current ``importance`` config section
        """
        self.llm = llm
        self._settings_provider = settings_provider or (lambda: {})

    async def score_headlines(self, headlines: Iterable[Headline], importance: ImportanceConfig) -> None:
        """Score headlines in place, setting importance_score and importance_reason."""
        for headline in headlines:
            headline.importance_score, headline.importance_reason = await self.score(headline, importance)

    async def score(self, headline: Headline, importance: ImportanceConfig) -> Tuple[float, Optional[str]]:
        """Score one headline.

        Returns:
            (score between 0.0 and 1.0, reason)
        """
        base, reason = NEUTRAL_SCORE, None
        if importance.llm_enabled and self.llm is not None and self.llm.is_available():
            try:
                base, reason = await self._score_with_llm(headline)
            except (LLMError, ValueError) as e:
                logger.warning(f"LLM scoring failed for headline {headline.id}, using rules: {e}")

        matched = [r for r in importance.rules if rule_matches(r, headline)]
        score = base * importance.base_weight
        for rule in matched:
            score *= rule.weight

        if reason is None and matched:
            reason = "Matched rules: " + "; ".join(r.condition for r in matched)
        return _clamp(score), reason

    async def _score_with_llm(self, headline: Headline) -> Tuple[float, Optional[str]]:
        settings = self._settings_provider()
        prompt = _render_prompt(
            settings.get("llm_prompt") or "{title}",
            {
                "title": headline.title,
                "description": headline.description or "",
                "plugin": headline.plugin_id,
                "category": headline.category,
                "tags": ", ".join(headline.tags),
                "context": settings.get("context", ""),
            },
        )
        response = await self.llm.generate_text(prompt, temperature=0.2, max_tokens=200)
        return parse_llm_score(response)

    def filter_important(self, headlines: List[Headline], threshold: float) -> List[Headline]:
        return [h for h in headlines if h.importance_score >= threshold]
