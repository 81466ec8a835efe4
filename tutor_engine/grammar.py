"""
Grammar / Vocabulary Scoring Module

Hybrid approach:
1. Ordered rule set of regex matchers (instant, deterministic)
2. Optional: reasoning-model contextual analysis (slow, may fail)
3. Combine-and-prioritize into one capped, severity-sorted error list

A failed or unparsable model call never aborts analysis; the scorer
falls back to rule-based results with the rule engine's own confidence.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Dict, Optional, Sequence, Any, Tuple
import logging
import re

from .errors import ExternalServiceError
from .gemini_analyzer import ReasoningModel, call_with_timeout, parse_json_payload
from .models import Severity, Strictness, utc_now
from .signals import long_word_ratio, sentence_count, word_count, words

logger = logging.getLogger(__name__)


ERROR_TYPES = ("grammar", "vocabulary", "syntax", "fluency")
DEFAULT_FOCUS_AREAS = ("grammar", "syntax", "fluency")

SEVERITY_WEIGHTS: Dict[Severity, int] = {
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}

ERROR_CAPS: Dict[Strictness, int] = {
    Strictness.STRICT: 10,
    Strictness.MODERATE: 7,
    Strictness.LENIENT: 5,
}

LEVEL_VOCABULARY_MULTIPLIER: Dict[str, float] = {
    "beginner": 0.8,
    "elementary": 0.85,
    "intermediate": 0.9,
    "upper-intermediate": 0.95,
    "advanced": 1.0,
    "proficient": 1.0,
}

RULE_ENGINE_CONFIDENCE = 0.8
EMPTY_TEXT_CONFIDENCE = 0.5
MODEL_CONFIDENCE = 0.9
ERROR_RATE_PENALTY = 0.2
STRICTNESS_NUDGE = 0.1


@dataclass(frozen=True)
class GrammarError:
    """One detected error, span is [start, end) into the analysed text."""
    type: str
    description: str
    severity: Severity
    start: int
    end: int
    suggestion: str = ""
    source: str = "rule-engine"

    @property
    def span(self) -> Tuple[int, int]:
        return (self.start, self.end)

    def with_severity(self, severity: Severity) -> "GrammarError":
        return GrammarError(
            type=self.type,
            description=self.description,
            severity=severity,
            start=self.start,
            end=self.end,
            suggestion=self.suggestion,
            source=self.source,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "description": self.description,
            "severity": self.severity.value,
            "position": {"start": self.start, "end": self.end},
            "suggestion": self.suggestion,
            "source": self.source,
        }


@dataclass(frozen=True)
class GrammarRule:
    id: str
    name: str
    description: str
    pattern: re.Pattern
    error_type: str
    severity: Severity
    suggestion: str


def _rule(id: str, name: str, description: str, pattern: str, error_type: str,
          severity: Severity, suggestion: str, flags: int = re.IGNORECASE) -> GrammarRule:
    return GrammarRule(id, name, description, re.compile(pattern, flags), error_type, severity, suggestion)


_BARE_VERBS = (
    "go|come|eat|see|buy|take|make|have|do|get|give|know|think|want|need|"
    "like|play|work|live|study|speak|talk|walk|write|read|drink|run|leave|meet"
)

GRAMMAR_RULES: List[GrammarRule] = [
    _rule(
        "subject-verb-agreement", "Subject-Verb Agreement",
        "Subject and verb must agree in number",
        r"\b(I|you|we|they)\s+(is|was)\b",
        "grammar", Severity.HIGH,
        'Use "am", "are" or "were" with this subject',
    ),
    _rule(
        "be-plus-base-verb", "Verb Form After 'be'",
        "A form of 'be' cannot be followed directly by a base verb",
        rf"\b(am|is|are|was|were)\s+({_BARE_VERBS})\b",
        "grammar", Severity.HIGH,
        'Drop the "be" verb or use the -ing form (e.g. "went", "am going")',
    ),
    _rule(
        "article-usage", "Article Usage",
        "Incorrect article usage",
        r"\b(a)\s+[aeiou]",
        "grammar", Severity.MEDIUM,
        'Use "an" before vowel sounds',
    ),
    _rule(
        "double-negative", "Double Negative",
        "Avoid double negatives",
        r"\b(don't|doesn't|didn't|won't|can't)\s+\w*\s+(no|nothing|nobody|never)\b",
        "grammar", Severity.MEDIUM,
        "Use only one negative in a sentence",
    ),
    _rule(
        "past-time-present-verb", "Tense With Past Time Marker",
        "A past time expression needs a past-tense verb",
        rf"\b({_BARE_VERBS})\b[^.!?]*?\b(yesterday|last\s+(?:night|week|month|year)|ago)\b",
        "grammar", Severity.MEDIUM,
        "Use the past tense when talking about the past",
    ),
    _rule(
        "sentence-fragment", "Sentence Fragment",
        "Incomplete sentence",
        r"^[A-Z][a-z]*\s+(and|but|or|because|since|although)\s*\.$",
        "syntax", Severity.HIGH,
        "Complete the sentence with a main clause",
        flags=re.MULTILINE,
    ),
    _rule(
        "run-on-sentence", "Run-on Sentence",
        "Sentence is too long without proper punctuation",
        r"[^.!?]{100,}",
        "syntax", Severity.LOW,
        "Break into shorter sentences or add punctuation",
        flags=0,
    ),
    _rule(
        "repeated-word", "Repeated Word",
        "The same word appears twice in a row",
        r"\b(\w+)\s+\1\b",
        "fluency", Severity.LOW,
        "Remove the repeated word",
    ),
]


@dataclass
class AnalysisConfig:
    strictness: Strictness = Strictness.MODERATE
    focus_areas: Tuple[str, ...] = DEFAULT_FOCUS_AREAS
    enable_model: bool = True


@dataclass
class ModelAnalysis:
    """Parsed contribution from the reasoning model."""
    errors: List[GrammarError] = field(default_factory=list)
    fluency_score: Optional[float] = None
    vocabulary_score: Optional[float] = None
    contextual_feedback: List[str] = field(default_factory=list)


@dataclass
class ImprovementSuggestion:
    category: str
    original: str
    suggested: str
    explanation: str
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "original": self.original,
            "suggested": self.suggested,
            "explanation": self.explanation,
            "confidence": self.confidence,
        }


@dataclass
class GrammarAnalysis:
    """Scored, prioritized result for one message."""
    grammar_score: float
    fluency_score: float
    vocabulary_score: float
    errors: List[GrammarError]
    suggestions: List[ImprovementSuggestion]
    confidence: float
    used_model: bool
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "grammar_score": self.grammar_score,
            "fluency_score": round(self.fluency_score, 2),
            "vocabulary_score": round(self.vocabulary_score, 2),
            "errors": [e.to_dict() for e in self.errors],
            "suggestions": [s.to_dict() for s in self.suggestions],
            "confidence": self.confidence,
            "used_model": self.used_model,
            "timestamp": self.timestamp.isoformat(),
        }


# --- pure scoring steps -------------------------------------------------

def apply_grammar_rules(text: str, focus_areas: Sequence[str] = DEFAULT_FOCUS_AREAS) -> List[GrammarError]:
    """Run the ordered rule set, restricted to the requested focus areas."""
    found: List[GrammarError] = []
    for rule in GRAMMAR_RULES:
        if rule.error_type not in focus_areas:
            continue
        for match in rule.pattern.finditer(text):
            found.append(GrammarError(
                type=rule.error_type,
                description=rule.description,
                severity=rule.severity,
                start=match.start(),
                end=match.end(),
                suggestion=rule.suggestion,
            ))
    return found


def combine_and_prioritize_errors(
    rule_errors: Sequence[GrammarError],
    model_errors: Sequence[GrammarError] = (),
    strictness: Strictness = Strictness.MODERATE,
) -> List[GrammarError]:
    """
    Merge, dedupe on identical spans (first wins), adjust for strictness,
    sort by severity then start offset and cap. Idempotent.
    """
    seen = set()
    unique: List[GrammarError] = []
    for error in list(rule_errors) + list(model_errors):
        if error.span in seen:
            continue
        seen.add(error.span)
        unique.append(error)

    if strictness == Strictness.LENIENT:
        unique = [e for e in unique if e.severity != Severity.LOW]
    elif strictness == Strictness.STRICT:
        unique = [e.with_severity(Severity.MEDIUM) if e.severity == Severity.LOW else e for e in unique]

    unique.sort(key=lambda e: (e.severity.rank, e.start))
    return unique[:ERROR_CAPS[strictness]]


def weighted_error_count(errors: Sequence[GrammarError]) -> int:
    return sum(SEVERITY_WEIGHTS[e.severity] for e in errors)


def calculate_grammar_score(text: str, errors: Sequence[GrammarError],
                            strictness: Strictness = Strictness.MODERATE) -> float:
    if not text.strip():
        return 0.0

    error_rate = weighted_error_count(errors) / max(word_count(text), 1)
    score = max(0.0, 1 - error_rate * ERROR_RATE_PENALTY)

    if strictness == Strictness.LENIENT:
        score = min(1.0, score + STRICTNESS_NUDGE)
    elif strictness == Strictness.STRICT:
        score = max(0.0, score - STRICTNESS_NUDGE)

    return round(score, 2)


def rule_engine_confidence(text: str) -> float:
    return RULE_ENGINE_CONFIDENCE if text.strip() else EMPTY_TEXT_CONFIDENCE


def calculate_confidence(rule_confidence: float, model_available: bool) -> float:
    confidence = rule_confidence
    if model_available:
        confidence = (confidence + MODEL_CONFIDENCE) / 2
    return round(confidence, 2)


def estimate_fluency(text: str, errors: Sequence[GrammarError]) -> float:
    words_per_sentence = word_count(text) / max(sentence_count(text), 1)
    fluency_errors = sum(1 for e in errors if e.type == "fluency")

    score = 0.7
    if 10 <= words_per_sentence <= 20:
        score += 0.1
    elif words_per_sentence < 5 or words_per_sentence > 30:
        score -= 0.1
    score -= fluency_errors * 0.05
    return max(0.0, min(1.0, score))


def estimate_vocabulary(text: str, level: Optional[str] = None) -> float:
    tokens = [w.lower() for w in words(text)]
    if not tokens:
        return 0.0
    diversity = len(set(tokens)) / len(tokens)
    score = diversity * 0.6 + long_word_ratio(text) * 0.4
    if level:
        score *= LEVEL_VOCABULARY_MULTIPLIER.get(level, 0.9)
    return max(0.0, min(1.0, score))


def build_suggestions(text: str, errors: Sequence[GrammarError],
                      contextual_feedback: Sequence[str] = ()) -> List[ImprovementSuggestion]:
    suggestions = [
        ImprovementSuggestion(
            category="grammar" if e.type == "syntax" else e.type,
            original=text[e.start:e.end],
            suggested=e.suggestion,
            explanation=e.description,
            confidence=0.8,
        )
        for e in errors[:3]
    ]
    for feedback in list(contextual_feedback)[:2]:
        suggestions.append(ImprovementSuggestion(
            category="fluency",
            original=text,
            suggested=feedback,
            explanation="Contextual improvement suggestion",
            confidence=0.7,
        ))
    return suggestions


def _as_score(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return max(0.0, min(1.0, float(value)))


def parse_model_analysis(raw: str, text_length: int) -> ModelAnalysis:
    """
    Parse the model's JSON payload. Raises ResponseParseError if the
    payload itself is unusable; individual malformed errors are skipped.
    """
    payload = parse_json_payload(raw, expect=dict)
    analysis = ModelAnalysis(
        fluency_score=_as_score(payload.get("fluencyScore")),
        vocabulary_score=_as_score(payload.get("vocabularyScore")),
        contextual_feedback=[str(f) for f in payload.get("contextualFeedback") or [] if f],
    )

    for item in payload.get("errors") or []:
        try:
            position = item["position"]
            start, end = int(position["start"]), int(position["end"])
            severity = Severity(str(item.get("severity", "medium")).lower())
            error_type = str(item.get("type", "grammar")).lower()
        except (KeyError, TypeError, ValueError):
            logger.debug(f"Skipping malformed model error entry: {item!r}")
            continue
        if error_type not in ERROR_TYPES or not (0 <= start < end <= text_length):
            continue
        analysis.errors.append(GrammarError(
            type=error_type,
            description=str(item.get("description", "")),
            severity=severity,
            start=start,
            end=end,
            suggestion=str(item.get("suggestion", "")),
            source="reasoning-model",
        ))
    return analysis


ANALYSIS_PROMPT = """You are an expert language teacher. Analyze the student's text for grammar, fluency and vocabulary.

Reply with ONLY a JSON object in this format, no other text or markdown:
{
  "errors": [
    {
      "type": "grammar|vocabulary|syntax|fluency",
      "description": "Clear explanation of the error",
      "severity": "low|medium|high",
      "position": {"start": 0, "end": 5},
      "suggestion": "Corrected version"
    }
  ],
  "fluencyScore": 0.85,
  "vocabularyScore": 0.75,
  "contextualFeedback": ["Specific improvement suggestions based on context"]
}

Positions are character offsets into the student text. Be constructive and encouraging."""


class GrammarScorer:
    """
    Rule engine plus optional reasoning model.

    score() is pure; analyze() may call the model and always returns.
    """

    def __init__(self, model: Optional[ReasoningModel] = None, timeout: float = 8.0):
        self.model = model
        self.timeout = timeout

    def score(
        self,
        text: str,
        config: Optional[AnalysisConfig] = None,
        level: Optional[str] = None,
        model_analysis: Optional[ModelAnalysis] = None,
    ) -> GrammarAnalysis:
        config = config or AnalysisConfig()
        rule_errors = apply_grammar_rules(text, config.focus_areas)
        model_errors = model_analysis.errors if model_analysis else []
        errors = combine_and_prioritize_errors(rule_errors, model_errors, config.strictness)

        fluency = None
        vocabulary = None
        feedback: List[str] = []
        if model_analysis:
            fluency = model_analysis.fluency_score
            vocabulary = model_analysis.vocabulary_score
            feedback = model_analysis.contextual_feedback

        return GrammarAnalysis(
            grammar_score=calculate_grammar_score(text, errors, config.strictness),
            fluency_score=fluency if fluency is not None else estimate_fluency(text, errors),
            vocabulary_score=vocabulary if vocabulary is not None else estimate_vocabulary(text, level),
            errors=errors,
            suggestions=build_suggestions(text, errors, feedback),
            confidence=calculate_confidence(rule_engine_confidence(text), model_analysis is not None),
            used_model=model_analysis is not None,
        )

    async def analyze(
        self,
        text: str,
        config: Optional[AnalysisConfig] = None,
        level: Optional[str] = None,
        topic: Optional[str] = None,
    ) -> GrammarAnalysis:
        config = config or AnalysisConfig()
        model_analysis = None
        if self.model is not None and config.enable_model and text.strip():
            model_analysis = await self._contextual_analysis(text, level, topic)
        return self.score(text, config, level, model_analysis)

    async def _contextual_analysis(self, text: str, level: Optional[str], topic: Optional[str]) -> Optional[ModelAnalysis]:
        context = (
            f"Student Level: {level or 'intermediate'}\n"
            f"Conversation Topic: {topic or 'general conversation'}"
        )
        try:
            raw = await call_with_timeout(
                self.model.generate(ANALYSIS_PROMPT, f'Student Text: "{text}"', context),
                self.timeout,
            )
            return parse_model_analysis(raw, len(text))
        except ExternalServiceError as e:
            logger.warning(f"Contextual grammar analysis unavailable, using rules only: {e}")
        except Exception as e:
            logger.error(f"Reasoning model error during grammar analysis: {e}")
        return None
