"""
AI document analysis.

Sends extracted text to the configured LLM and parses a structured
result: summary, entities, timeline, key insights, categories and a
confidence score. The analyzer raises on failure; the pipeline decides
whether to degrade to the fallback result.
"""
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .llm_client import BaseLLMClient, LLMError, LLMMessage

logger = logging.getLogger(__name__)

MAX_ANALYSIS_CHARS = 15000
DEFAULT_CONFIDENCE = 0.7
ANALYSIS_TEMPERATURE = 0.3
ANALYSIS_MAX_TOKENS = 2000

SYSTEM_PROMPT = (
    "You are an expert document analyst with expertise in business, "
    "financial, and legal documents."
)

ANALYSIS_PROMPT = """Please analyze the following document content comprehensively.

DOCUMENT TITLE: {title}
DOCUMENT TYPE: {document_type}

DOCUMENT CONTENT:
{content}

Provide a detailed analysis in JSON format with the following structure:
{{
  "summary": "A concise 2-3 paragraph summary of the document's key points and overall purpose",
  "entities": [
    {{"name": "entity name", "type": "person/organization/location/date", "mentions": ["page/paragraph references"]}}
  ],
  "timeline": [
    {{"date": "YYYY-MM-DD", "event": "description of what happens on this date"}}
  ],
  "keyInsights": ["List of 3-5 key insights from the document"],
  "categories": ["Suggest 2-3 categories this document belongs to"],
  "confidence": 0.95
}}
confidence is a score between 0 and 1. Respond with the JSON object only."""


@dataclass
class AnalysisResult:
    """Structured output of a document analysis."""
    summary: str
    entities: List[Dict[str, Any]] = field(default_factory=list)
    timeline: List[Dict[str, Any]] = field(default_factory=list)
    key_insights: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    confidence: float = DEFAULT_CONFIDENCE
    model: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'summary': self.summary,
            'entities': self.entities,
            'timeline': self.timeline,
            'keyInsights': self.key_insights,
            'categories': self.categories,
            'confidence': self.confidence,
        }


def fallback_analysis() -> AnalysisResult:
    """Result recorded when analysis fails but the document is still usable."""
    return AnalysisResult(
        summary="Unable to generate summary due to processing error.",
        entities=[],
        timeline=[],
        key_insights=["Analysis error occurred"],
        categories=[],
        confidence=0.0,
    )


def truncate_for_analysis(text: str, max_chars: int = MAX_ANALYSIS_CHARS) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


def _as_list(value) -> list:
    return value if isinstance(value, list) else []


def parse_analysis_response(response_text: str) -> AnalysisResult:
    """
    Parse the LLM response into an AnalysisResult.

    Missing fields get the same defaults the prompt implies.

    Raises:
        LLMError: If no JSON object can be parsed from the response
    """
    json_match = re.search(r'\{[\s\S]*\}', response_text.strip())
    if not json_match:
        raise LLMError("No JSON found in analysis response")

    try:
        data = json.loads(json_match.group())
    except json.JSONDecodeError as e:
        raise LLMError(f"Invalid JSON in analysis response: {str(e)[:80]}")

    if not isinstance(data, dict):
        raise LLMError("Analysis response is not a JSON object")

    confidence = data.get('confidence')
    try:
        confidence = float(confidence) if confidence else DEFAULT_CONFIDENCE
    except (TypeError, ValueError):
        confidence = DEFAULT_CONFIDENCE

    summary = data.get('summary')
    return AnalysisResult(
        summary=summary if isinstance(summary, str) and summary.strip() else "No summary available",
        entities=_as_list(data.get('entities')),
        timeline=_as_list(data.get('timeline')),
        key_insights=[str(i) for i in _as_list(data.get('keyInsights'))],
        categories=[str(c) for c in _as_list(data.get('categories'))],
        confidence=max(0.0, min(1.0, confidence)),
    )


class DocumentAnalyzer:
    """Runs the analysis prompt against an LLM client."""

    def __init__(self, client: BaseLLMClient):
        self.client = client

    @property
    def model_name(self) -> str:
        return self.client.model_name

    def analyze(self, text: str, title: str, document_type: str) -> AnalysisResult:
        """
        Analyze a document's text.

        Args:
            text: Extracted document text (truncated to MAX_ANALYSIS_CHARS)
            title: Document title, included in the prompt
            document_type: Document type value, included in the prompt

        Raises:
            LLMError: If the LLM call fails or returns unparseable output
        """
        prompt = ANALYSIS_PROMPT.format(
            title=title,
            document_type=document_type,
            content=truncate_for_analysis(text),
        )

        response = self.client.chat(
            [
                LLMMessage(role="system", content=SYSTEM_PROMPT),
                LLMMessage(role="user", content=prompt),
            ],
            temperature=ANALYSIS_TEMPERATURE,
            max_tokens=ANALYSIS_MAX_TOKENS,
            json_mode=True,
        )

        result = parse_analysis_response(response.content)
        result.model = response.model

        logger.info(
            f"Document analysis completed: title={title!r}, chars={len(text)}, "
            f"summary_len={len(result.summary)}, entities={len(result.entities)}"
        )
        return result
