"""
Steering Engine - Guidance for a spec that is being written

Reads project memory (never writes it) and produces:
- Recommendations: reusable patterns, related decisions, constraints
- Warnings: inconsistent pattern choices, conflicting decisions,
  architectural constraints the spec may not address

The heuristics are plain data in SteeringRules so they can be tested and
extended without touching the engine.
"""

import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Optional, Union

from ..config import MemoryConfig
from .errors import NotLoadedError
from .manager import ProjectMemoryManager
from .schema import Decision, Pattern, ProjectMemory, Recommendation, SteeringOutput, SteeringWarning

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SteeringRules:
    """Word lists and thresholds behind the similarity and conflict checks."""

    # Words shorter than this are ignored when comparing names/descriptions
    significant_word_min_length: int = 4
    min_shared_words: int = 2
    # Shortest shared prefix/suffix that counts
    min_affix_length: int = 4
    key_terms: tuple[str, ...] = (
        "auth", "authn", "authz", "login", "user", "session", "token",
        "jwt", "oauth", "database", "db", "cache", "storage", "redis",
        "postgres", "mongo", "mysql", "sqlite", "elastic", "api", "rest",
        "graphql", "webhook", "http", "https", "ssl", "tls",
        "encrypt", "decrypt", "hash", "crypto", "security", "secure",
    )
    overlap_ratio: float = 0.4
    overlap_floor: int = 4
    # (positive, *negatives): a positive on one side and a negative on the other conflict
    opposites: tuple[tuple[str, ...], ...] = (
        ("use", "avoid", "dont use", "not use"),
        ("implement", "remove", "delete", "drop"),
        ("enable", "disable"),
        ("add", "remove"),
        ("increase", "decrease"),
        ("upgrade", "downgrade", "revert"),
        ("migrate to", "stay on", "keep using"),
    )
    # Alias -> engine
    databases: dict[str, str] = field(default_factory=lambda: {
        "postgresql": "postgresql",
        "postgres": "postgresql",
        "mysql": "mysql",
        "sqlite": "sqlite",
        "mongodb": "mongodb",
        "mongo": "mongodb",
        "redis": "redis",
        "cassandra": "cassandra",
        "dynamodb": "dynamodb",
        "elasticsearch": "elasticsearch",
        "couchbase": "couchbase",
    })
    consistency_fallback_usage: int = 3
    best_practice_spec_count: int = 5


DEFAULT_RULES = SteeringRules()


# =============================================================================
# Rule helpers (pure)
# =============================================================================

def _significant_words(text: str, rules: SteeringRules) -> list[str]:
    words = re.sub(r"[^a-z0-9]", " ", text.lower()).split()
    return [w for w in words if len(w) >= rules.significant_word_min_length]


def _alnum(text: str) -> str:
    return re.sub(r"[^a-z0-9]", "", text.lower())


def are_patterns_similar(a: str, b: str, rules: SteeringRules = DEFAULT_RULES) -> bool:
    """At least `min_shared_words` significant words in common."""
    words_a = set(_significant_words(a, rules))
    common = [w for w in _significant_words(b, rules) if w in words_a]
    return len(common) >= rules.min_shared_words


def share_semantic_similarity(a: str, b: str, rules: SteeringRules = DEFAULT_RULES) -> bool:
    """
    Loose name similarity, e.g. "common-auth" and "different-auth".

    Same text after stripping punctuation, a shared prefix or suffix, or a
    shared key term plus enough character overlap.
    """
    norm_a, norm_b = _alnum(a), _alnum(b)
    if not norm_a or not norm_b:
        return False
    if norm_a == norm_b:
        return True

    for i in range(rules.min_affix_length, min(len(norm_a), len(norm_b))):
        if norm_a[-i:] == norm_b[-i:] or norm_a[:i] == norm_b[:i]:
            return True

    a_has_term = any(term in norm_a for term in rules.key_terms)
    b_has_term = any(term in norm_b for term in rules.key_terms)
    if a_has_term and b_has_term:
        longer, shorter = (norm_a, norm_b) if len(norm_a) > len(norm_b) else (norm_b, norm_a)
        overlap = sum(1 for ch in shorter if ch in longer)
        if overlap >= min(len(shorter) * rules.overlap_ratio, rules.overlap_floor):
            return True

    return False


def _word_forms(word: str) -> str:
    """Regex for a verb and its inflections: use/uses/used/using, add/adding, drop/dropped."""
    if word.endswith("e"):
        return rf"{re.escape(word[:-1])}(?:e|es|ed|ing)"
    last = re.escape(word[-1])
    return rf"{re.escape(word)}(?:s|es|ed|ing|{last}ed|{last}ing)?"


@lru_cache(maxsize=256)
def _phrase_pattern(phrase: str) -> re.Pattern:
    return re.compile(r"\b" + r"\s+".join(_word_forms(w) for w in phrase.split()) + r"\b")


def _mentions(text: str, phrase: str) -> bool:
    """Whole-word match of `phrase`, any inflection; "add" never matches "address"."""
    return _phrase_pattern(phrase).search(text) is not None


def are_decisions_conflicting(a: str, b: str, rules: SteeringRules = DEFAULT_RULES) -> bool:
    """An opposing verb pair appears on opposite sides (e.g. enable vs disable)."""
    norm_a = re.sub(r"[^a-z0-9\s]", "", a.lower())
    norm_b = re.sub(r"[^a-z0-9\s]", "", b.lower())

    for positive, *negatives in rules.opposites:
        pos_a, pos_b = _mentions(norm_a, positive), _mentions(norm_b, positive)
        for negative in negatives:
            if (pos_a and _mentions(norm_b, negative)) or (_mentions(norm_a, negative) and pos_b):
                return True
    return False


def database_engines(text: str, rules: SteeringRules = DEFAULT_RULES) -> set[str]:
    lowered = text.lower()
    return {engine for alias, engine in rules.databases.items() if alias in lowered}


def are_database_conflicts(a: str, b: str, rules: SteeringRules = DEFAULT_RULES) -> bool:
    """Both decisions name database engines, and none in common."""
    engines_a, engines_b = database_engines(a, rules), database_engines(b, rules)
    return bool(engines_a) and bool(engines_b) and not (engines_a & engines_b)


# =============================================================================
# Engine
# =============================================================================

class SteeringEngine:
    """
    Analysis over one project's memory.

    Call initialize() first; everything else raises NotLoadedError until the
    memory is loaded. Changes made through `engine.manager` are visible to
    later analysis calls.
    """

    def __init__(
        self,
        project_root: Union[str, Path],
        rules: Optional[SteeringRules] = None,
        config: Optional[MemoryConfig] = None,
        manager: Optional[ProjectMemoryManager] = None,
    ):
        self.rules = rules or DEFAULT_RULES
        self._manager = manager or ProjectMemoryManager(project_root, config)

    def initialize(self, project_id: str) -> None:
        memory = self._manager.load(project_id)
        logger.debug("Steering initialized for %s", memory.project_id)

    @property
    def manager(self) -> ProjectMemoryManager:
        return self._manager

    def get_memory(self) -> Optional[ProjectMemory]:
        return self._manager.memory if self._manager.is_loaded else None

    def _require(self) -> ProjectMemory:
        if not self._manager.is_loaded:
            raise NotLoadedError("Steering engine not initialized. Call initialize() first.")
        return self._manager.memory

    # -------------------------------------------------------------------------
    # Public analysis
    # -------------------------------------------------------------------------

    def analyze(self, spec_id: str) -> SteeringOutput:
        """Context summary, warnings, recommendations and related decisions."""
        self._require()
        return SteeringOutput(
            context=self._build_context(spec_id),
            warnings=self.warn(spec_id),
            recommendations=self.suggest(spec_id),
            related_decisions=self._find_related_decisions(spec_id),
        )

    def suggest(self, spec_id: str) -> list[Recommendation]:
        memory = self._require()
        recommendations = []

        # Frequently used patterns
        for pattern in self._manager.get_reusable_patterns(2)[:3]:
            recommendations.append(Recommendation(
                type="pattern",
                message=f'Consider using pattern "{pattern.name}": {pattern.description}',
                confidence="high" if pattern.usage_count >= 3 else "medium",
                pattern_id=pattern.id,
            ))

        # Decisions from related specs
        related = set(self._manager.get_related_specs(spec_id))
        related_decisions = [d for d in memory.decisions if d.spec_id in related]
        for decision in related_decisions[:2]:
            recommendations.append(Recommendation(
                type="decision",
                message=f"Related decision from {decision.spec_id}: {decision.decision}",
                confidence="medium",
                decision_id=decision.id,
            ))

        # Technical and architectural constraints
        constraints = [c for c in memory.constraints if c.type in ("technical", "architectural")]
        for constraint in constraints[:2]:
            recommendations.append(Recommendation(
                type="constraint",
                message=f"Consider constraint: {constraint.description}",
                confidence="high",
            ))

        if len(memory.specs) > self.rules.best_practice_spec_count:
            recommendations.append(Recommendation(
                type="best-practice",
                message=(
                    "This is an established project. Consider reviewing patterns "
                    "from completed specs before implementing."
                ),
                confidence="medium",
            ))

        return recommendations

    def warn(self, spec_id: str) -> list[SteeringWarning]:
        memory = self._require()
        spec_patterns = self._manager.get_patterns_for_spec(spec_id)

        warnings = self._pattern_consistency(spec_patterns, memory.patterns)
        warnings += self._decision_conflicts(spec_id, memory.decisions)

        # Architectural constraints not echoed by any pattern this spec uses
        unaddressed = [
            c for c in memory.constraints
            if c.type == "architectural" and not any(
                c.description.lower() in p.description.lower() or c.type in p.name.lower()
                for p in spec_patterns
            )
        ]
        if unaddressed and spec_id:
            warnings.append(SteeringWarning(
                type="missing",
                message=(
                    f"This spec may not address {len(unaddressed)} architectural "
                    "constraint(s). Review constraints from project memory."
                ),
                severity="medium",
            ))

        return warnings

    def recommend_patterns(self, spec_id: str, limit: int = 5) -> list[Pattern]:
        """Patterns from related specs first, then the most used overall."""
        memory = self._require()
        most_used = sorted(memory.patterns, key=lambda p: p.usage_count, reverse=True)[:limit]

        related = set(self._manager.get_related_specs(spec_id))
        if not related:
            return most_used

        from_related = [
            p for p in memory.patterns
            if any(e.spec_id in related for e in p.examples)
        ]
        result, seen = [], set()
        for pattern in from_related + most_used:
            if len(result) >= limit:
                break
            if pattern.id not in seen:
                seen.add(pattern.id)
                result.append(pattern)
        return result

    # -------------------------------------------------------------------------
    # Checks
    # -------------------------------------------------------------------------

    def _similar(self, a: Pattern, b: Pattern) -> bool:
        return (
            are_patterns_similar(a.name, b.name, self.rules)
            or are_patterns_similar(a.description, b.description, self.rules)
            or share_semantic_similarity(a.name, b.name, self.rules)
        )

    def _pattern_consistency(self, spec_patterns: list[Pattern], all_patterns: list[Pattern]) -> list[SteeringWarning]:
        warnings = []
        for used in spec_patterns:
            for other in all_patterns:
                if other.id == used.id or other.name.lower() == used.name.lower():
                    continue
                if other.usage_count > used.usage_count and self._similar(other, used):
                    warnings.append(SteeringWarning(
                        type="consistency",
                        message=(
                            f'Pattern "{used.name}" is used here, but "{other.name}" is more common '
                            f"({other.usage_count} vs {used.usage_count} uses). Consider for consistency."
                        ),
                        severity="low",
                        related_spec_id=other.examples[0].spec_id if other.examples else None,
                    ))

        if warnings:
            return warnings

        # No direct match: still point at a dominant pattern to encourage reuse
        dominant = max(
            (p for p in all_patterns if p.usage_count >= self.rules.consistency_fallback_usage),
            key=lambda p: p.usage_count,
            default=None,
        )
        if dominant:
            warnings.append(SteeringWarning(
                type="consistency",
                message=(
                    f'Project commonly uses pattern "{dominant.name}" '
                    f"({dominant.usage_count} uses). Consider aligning for consistency."
                ),
                severity="low",
                related_spec_id=dominant.examples[0].spec_id if dominant.examples else None,
            ))
        return warnings

    def _decision_conflicts(self, spec_id: str, decisions: list[Decision]) -> list[SteeringWarning]:
        warnings = []
        own = [d for d in decisions if d.spec_id == spec_id]
        others = [d for d in decisions if d.spec_id != spec_id]
        for decision in own:
            for other in others:
                if (
                    are_decisions_conflicting(other.decision, decision.decision, self.rules)
                    or are_database_conflicts(other.decision, decision.decision, self.rules)
                ):
                    warnings.append(SteeringWarning(
                        type="conflict",
                        message=(
                            f'Potential conflict: This spec decides "{decision.decision}" '
                            f'but {other.spec_id} decided "{other.decision}"'
                        ),
                        severity="high",
                        related_spec_id=other.spec_id,
                    ))
        return warnings

    def _find_related_decisions(self, spec_id: str) -> list[Decision]:
        memory = self._require()
        related = set(self._manager.get_related_specs(spec_id))
        decisions = [d for d in memory.decisions if d.spec_id in related or d.spec_id == spec_id]
        # Nothing related yet: the first few decisions still give a new spec some context
        if not decisions:
            decisions = memory.decisions[:5]
        return decisions

    def _build_context(self, spec_id: str) -> str:
        memory = self._require()
        parts = []
        if memory.patterns:
            parts.append(f"{len(memory.patterns)} patterns in project memory")
        if memory.decisions:
            parts.append(f"{len(memory.decisions)} architectural decisions recorded")
        related = self._manager.get_related_specs(spec_id)
        if related:
            parts.append(f"{len(related)} related specs")
        return ", ".join(parts) or "No project memory available"
