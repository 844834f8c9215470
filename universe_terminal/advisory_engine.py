# --- API DOCUMENTATION for universe_terminal/advisory_engine.py ---
#
# **Purpose:** Produces advisory events for a partially or fully typed
# command: typo corrections, ranked suggestions, safety warnings, catalog
# explanations and learning tips. Advisory output never gates execution.
#
# **Public Functions:**
#
# def levenshtein_distance(a: str, b: str) -> int:
#     """Edit distance with unit insert/delete/substitute costs."""
#
# **Public Classes:**
#
# class AdvisoryEngine:
#     def __init__(self, catalog, safety_engine, tip_provider=None, classifier=None,
#                  builtin_names=(), max_suggestions=5, max_typo_distance=2,
#                  flag_confidence=0.8, classifier_warn_below=0.3):
#
#     async def analyze(self, text: str) -> List[AdvisoryEvent]:
#         """Events in order: TypoCorrection, Suggestions, Warning(s), Explanation, LearningTip."""
#
#     def post_submit(self, command: str) -> List[AdvisoryEvent]:
#         """Learning tips for a command that has just been submitted."""
#
#     def correct_typo(self, text: str) -> Optional[TypoCorrection]:
#     def suggest(self, text: str) -> Suggestions:
#     def explain(self, text: str) -> str:
#
# --- END API DOCUMENTATION ---

import shutil
import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

from universe_terminal.classifier import CommandClassifier
from universe_terminal.command_catalog import CommandCatalog
from universe_terminal.models import (
    AdvisoryEvent, AdvisoryWarning, CommandSuggestion, Explanation, LearningTip,
    Severity, Suggestions, TypoCorrection, parse_command,
)
from universe_terminal.safety_engine import SafetyEngine

logger = logging.getLogger(__name__)

DEFAULT_MAX_SUGGESTIONS = 5
DEFAULT_MAX_TYPO_DISTANCE = 2
DEFAULT_FLAG_CONFIDENCE = 0.8
DEFAULT_CLASSIFIER_WARN_BELOW = 0.3

UNKNOWN_COMMAND_EXPLANATION = "System command - executing in shell"


class TipProvider(Protocol):
    def get_tips(self, command: str) -> Sequence[str]: ...


def levenshtein_distance(a: str, b: str) -> int:
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,                        # deletion
                current[j - 1] + 1,                     # insertion
                previous[j - 1] + (char_a != char_b),   # substitution
            ))
        previous = current
    return previous[-1]


class AdvisoryEngine:
    def __init__(self, catalog: CommandCatalog, safety_engine: SafetyEngine,
                 tip_provider: Optional[TipProvider] = None,
                 classifier: Optional[CommandClassifier] = None,
                 builtin_names: Iterable[str] = (),
                 max_suggestions: int = DEFAULT_MAX_SUGGESTIONS,
                 max_typo_distance: int = DEFAULT_MAX_TYPO_DISTANCE,
                 flag_confidence: float = DEFAULT_FLAG_CONFIDENCE,
                 classifier_warn_below: float = DEFAULT_CLASSIFIER_WARN_BELOW):
        self.catalog = catalog
        self.safety_engine = safety_engine
        self.tip_provider = tip_provider
        self.classifier = classifier
        self.builtin_names = frozenset(builtin_names)
        self.max_suggestions = max_suggestions
        self.max_typo_distance = max_typo_distance
        self.flag_confidence = flag_confidence
        self.classifier_warn_below = classifier_warn_below

    @classmethod
    def from_config(cls, config: Dict[str, Any], catalog: CommandCatalog, safety_engine: SafetyEngine,
                    **kwargs) -> "AdvisoryEngine":
        section = config.get("advisory", {})
        return cls(
            catalog, safety_engine,
            max_suggestions=int(section.get("max_suggestions", DEFAULT_MAX_SUGGESTIONS)),
            max_typo_distance=int(section.get("max_typo_distance", DEFAULT_MAX_TYPO_DISTANCE)),
            flag_confidence=float(section.get("flag_confidence", DEFAULT_FLAG_CONFIDENCE)),
            classifier_warn_below=float(section.get("classifier_warn_below", DEFAULT_CLASSIFIER_WARN_BELOW)),
            **kwargs,
        )

    async def analyze(self, text: str) -> List[AdvisoryEvent]:
        stripped = text.strip()
        if not stripped:
            return []

        events: List[AdvisoryEvent] = []

        typo = self.correct_typo(stripped)
        if typo:
            events.append(typo)

        suggestions = self.suggest(text)
        if suggestions.suggestions:
            events.append(suggestions)

        verdict = self.safety_engine.check(stripped)
        if not verdict.is_safe:
            events.append(AdvisoryWarning(message=verdict.reason, severity=verdict.severity))

        validity_warning = await self._check_validity(stripped, has_typo=typo is not None)
        if validity_warning:
            events.append(validity_warning)

        if self.catalog.get(parse_command(stripped).name) is not None:
            events.append(Explanation(text=self.explain(stripped)))

        events.extend(self.post_submit(stripped))
        return events

    def post_submit(self, command: str) -> List[AdvisoryEvent]:
        if self.tip_provider is None:
            return []
        tips = tuple(self.tip_provider.get_tips(command.strip()))
        return [LearningTip(tips=tips)] if tips else []

    # --- Typo correction ---

    def correct_typo(self, text: str) -> Optional[TypoCorrection]:
        stripped = text.strip()
        first = parse_command(stripped).name
        if not first:
            return None

        best_name = None
        best_distance = self.max_typo_distance + 1
        for entry in self.catalog.get_all():
            distance = levenshtein_distance(first, entry.name)
            if distance == 0:
                return None
            if distance < best_distance:
                best_name, best_distance = entry.name, distance

        if best_name is None:
            return None
        correction = best_name + stripped[len(first):]
        logger.debug(f"Typo correction for '{stripped}': '{correction}' (distance {best_distance})")
        return TypoCorrection(original=stripped, correction=correction, confidence=max(0.0, 1 - best_distance / 3))

    # --- Suggestions ---

    def suggest(self, text: str) -> Suggestions:
        parsed = parse_command(text)
        if not parsed.name:
            return Suggestions(suggestions=())

        candidates: List[CommandSuggestion] = []
        if not parsed.args and not text[-1:].isspace():
            prefix = parsed.name
            for entry in self.catalog.search(prefix):
                candidates.append(CommandSuggestion(
                    command=entry.name,
                    description=entry.description,
                    confidence=len(prefix) / len(entry.name),
                ))
        else:
            entry = self.catalog.get(parsed.name)
            if entry is not None:
                typed = set(parsed.args)
                for flag in entry.flags:
                    if flag.flag in typed:
                        continue
                    candidates.append(CommandSuggestion(
                        command=f"{entry.name} {flag.flag}",
                        description=flag.description,
                        confidence=self.flag_confidence,
                    ))

        # sorted() is stable: equal confidences keep catalog order.
        ranked = sorted(candidates, key=lambda s: s.confidence, reverse=True)
        return Suggestions(suggestions=tuple(ranked[:self.max_suggestions]))

    # --- Explanation ---

    def explain(self, text: str) -> str:
        parsed = parse_command(text)
        entry = self.catalog.get(parsed.name)
        lines = [f"📌 {entry.name if entry else parsed.name}", ""]
        if entry is None:
            lines.append(UNKNOWN_COMMAND_EXPLANATION)
            return "\n".join(lines)

        lines.extend([entry.description, ""])
        if parsed.args:
            lines.append("Arguments:")
            for arg in parsed.args:
                flag = entry.find_flag(arg)
                lines.append(f"  • {arg}: {flag.description if flag else '(argument)'}")
            lines.append("")
        lines.append(f"Example: {entry.example}")
        return "\n".join(lines)

    # --- Validity (classifier with rule-based fallback) ---

    async def _check_validity(self, text: str, has_typo: bool) -> Optional[AdvisoryWarning]:
        if self.classifier is not None:
            try:
                score = await self.classifier.classify(text)
            except Exception as e:
                logger.warning(f"Classifier failed for '{text}': {e}", exc_info=True)
                score = None
            if score is not None:
                if score < self.classifier_warn_below:
                    return AdvisoryWarning(
                        message=f"🤔 This does not look like a shell command (score {score:.2f})",
                        severity=Severity.LOW,
                    )
                return None
            logger.debug("Classifier unavailable; using rule-based validity check.")

        name = parse_command(text).name
        if has_typo or self._is_known_command(name):
            return None
        return AdvisoryWarning(message=f"❓ '{name}' is not a known command", severity=Severity.LOW)

    def _is_known_command(self, name: str) -> bool:
        return (
            self.catalog.get(name) is not None
            or name in self.builtin_names
            or shutil.which(name) is not None
        )
