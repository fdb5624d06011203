"""
Project Memory Manager - CRUD over one project's memory

Remembers, across spec sessions:
- Which specs exist
- Decisions (with rationale and considered alternatives)
- Patterns, merged by case-insensitive name and counted per use
- Constraints the specs should respect
- A capped history of everything above

Typical use by a command:

    manager = ProjectMemoryManager(project_root)
    manager.load("my-project")
    manager.add_decision("SPEC-001", "Use PostgreSQL", "Relational data")
    manager.save()

Or, when other processes may be writing at the same time:

    with manager.transaction("my-project"):
        manager.add_spec("SPEC-002")
"""

import hashlib
import itertools
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Optional, Union

from ..config import MemoryConfig
from .errors import FieldTooLongError, InvalidConstraintTypeError, NotLoadedError, ValidationError
from .schema import (
    CONSTRAINT_TYPES,
    MAX_CONSTRAINT_LENGTH,
    MAX_CONTEXT_LENGTH,
    MAX_DECISION_LENGTH,
    MAX_DETAILS_LENGTH,
    MAX_PATTERN_DESCRIPTION_LENGTH,
    MAX_PATTERN_NAME_LENGTH,
    MAX_RATIONALE_LENGTH,
    Constraint,
    Decision,
    HistoryEntry,
    Pattern,
    PatternExample,
    ProjectMemory,
    SpecContext,
    utc_now,
)
from .store import MemoryStore
from .validation import redact_sensitive_info, require_spec_id, require_text, sanitize_string

logger = logging.getLogger(__name__)

MAX_ALTERNATIVES = 10
MAX_EXAMPLES = 20

_id_sequence = itertools.count()


@dataclass(frozen=True)
class Unloaded:
    """Nothing loaded yet: only load() (or transaction()) is allowed."""


@dataclass(frozen=True)
class Loaded:
    memory: ProjectMemory


ManagerState = Union[Unloaded, Loaded]


class ProjectMemoryManager:
    """
    Owns the ProjectMemory of one project directory.

    Starts Unloaded; every operation except load()/exists() raises
    NotLoadedError until load() succeeds. Not safe for concurrent use by
    several threads; separate processes are serialized by the store's lock.
    """

    def __init__(
        self,
        project_root: Union[str, Path],
        config: Optional[MemoryConfig] = None,
        store: Optional[MemoryStore] = None,
    ):
        self.config = config or MemoryConfig.from_env()
        self.store = store or MemoryStore(project_root, self.config)
        self._state: ManagerState = Unloaded()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def load(self, project_id: str) -> ProjectMemory:
        """Load memory from disk, or start empty if no memory file exists."""
        memory = self.store.load(project_id)
        self._state = Loaded(memory)
        return memory

    def save(self) -> None:
        self.store.save(self._require())

    @contextmanager
    def transaction(self, project_id: str) -> Iterator[ProjectMemory]:
        """
        Hold the lock across load -> changes -> save.

        Use when other processes may touch the same project: each writer sees
        the state saved by the previous one. Nothing is saved if the body
        raises. Requires a reentrant lock backend (FileLock is).
        """
        with self.store.lock:
            memory = self.load(project_id)
            yield memory
            self.save()

    @property
    def is_loaded(self) -> bool:
        return isinstance(self._state, Loaded)

    @property
    def memory(self) -> ProjectMemory:
        return self._require()

    def get_memory(self) -> ProjectMemory:
        return self._require()

    @property
    def memory_file_path(self) -> Path:
        return self.store.memory_file

    def exists(self) -> bool:
        """Whether a memory file is on disk, without loading it."""
        return self.store.exists()

    def _require(self) -> ProjectMemory:
        if isinstance(self._state, Loaded):
            return self._state.memory
        raise NotLoadedError()

    # =========================================================================
    # Mutations
    # =========================================================================

    def add_spec(self, spec_id: str) -> None:
        """Track a spec. Adding the same spec twice is a no-op."""
        memory = self._require()
        spec_id = require_spec_id(spec_id)

        if spec_id in memory.specs:
            return
        memory.specs.append(spec_id)
        self._add_history(spec_id, "created", f"Spec {spec_id} added to project memory")

    def add_decision(
        self,
        spec_id: str,
        decision: str,
        rationale: str,
        alternatives: Optional[Iterable[str]] = None,
    ) -> Decision:
        """
        Record an architectural decision.

        Rationale and alternatives are redacted for secret-like text; only
        the first MAX_ALTERNATIVES alternatives are kept.
        """
        memory = self._require()
        spec_id = require_spec_id(spec_id)
        decision = require_text("decision", decision, MAX_DECISION_LENGTH)
        rationale = self._redacted_text("rationale", rationale, MAX_RATIONALE_LENGTH)
        cleaned_alternatives = [
            self._redacted_text("alternatives", alt, MAX_DECISION_LENGTH)
            for alt in (alternatives or [])
        ]

        new_decision = Decision(
            id=self._generate_id("DECISION", decision),
            spec_id=spec_id,
            decision=decision,
            rationale=rationale,
            timestamp=utc_now(),
            alternatives=cleaned_alternatives[:MAX_ALTERNATIVES],
        )

        memory.decisions.append(new_decision)
        self._add_history(spec_id, "decision", f"Decision recorded: {decision}")
        return new_decision

    def record_pattern(
        self,
        spec_id: str,
        name: str,
        description: str,
        examples: Optional[Iterable[Union[PatternExample, dict]]] = None,
    ) -> Pattern:
        """
        Record a pattern used by a spec.

        A pattern whose name matches an existing one (case-insensitive) bumps
        that pattern's usage count and merges in new examples; otherwise a new
        pattern starts with usage_count=1. Examples are de-duplicated by
        (spec_id, context) and capped at MAX_EXAMPLES.
        """
        memory = self._require()
        spec_id = require_spec_id(spec_id)
        name = require_text("name", name, MAX_PATTERN_NAME_LENGTH)
        description = require_text("description", description, MAX_PATTERN_DESCRIPTION_LENGTH)
        new_examples = [self._clean_example(e) for e in (examples or [])]

        existing = self._find_pattern(name)
        if existing:
            existing.usage_count += 1
            existing.examples = self._merge_examples(existing.examples, new_examples)
            self._add_history(spec_id, "pattern", f'Pattern "{existing.name}" used again')
            return existing

        pattern = Pattern(
            id=self._generate_id("PATTERN", name),
            name=name,
            description=description,
            examples=self._merge_examples([], new_examples),
            usage_count=1,
        )
        memory.patterns.append(pattern)
        self._add_history(spec_id, "pattern", f'New pattern "{pattern.name}" recorded')
        return pattern

    def add_constraint(
        self,
        type: str,
        description: str,
        source: Optional[str] = None,
        spec_id: Optional[str] = None,
    ) -> Constraint:
        """Add a technical, business or architectural constraint."""
        memory = self._require()
        if type not in CONSTRAINT_TYPES:
            raise InvalidConstraintTypeError(
                f"Invalid constraint type {type!r}: expected one of {', '.join(CONSTRAINT_TYPES)}"
            )
        description = require_text("description", description, MAX_CONSTRAINT_LENGTH)
        if source is not None:
            source = sanitize_string(source) or None
        if spec_id is not None:
            spec_id = require_spec_id(spec_id)

        constraint = Constraint(
            id=self._generate_id("CONSTRAINT", description),
            type=type,
            description=description,
            source=source,
            spec_id=spec_id,
        )
        memory.constraints.append(constraint)
        return constraint

    # =========================================================================
    # Queries
    # =========================================================================

    def get_reusable_patterns(self, min_usage_count: int = 2) -> list[Pattern]:
        """Patterns used at least `min_usage_count` times, most used first."""
        memory = self._require()
        return sorted(
            (p for p in memory.patterns if p.usage_count >= min_usage_count),
            key=lambda p: p.usage_count,
            reverse=True,
        )

    def get_related_specs(self, spec_id: str) -> list[str]:
        """
        Specs that share a pattern example or a similar decision with `spec_id`.

        Decisions are similar when one text contains the other
        (case-insensitive). `spec_id` itself is never included.
        """
        memory = self._require()
        related: dict[str, None] = {}

        # Specs that share patterns
        for pattern in memory.patterns:
            spec_ids = [e.spec_id for e in pattern.examples]
            if spec_id in spec_ids:
                for other in spec_ids:
                    if other != spec_id:
                        related[other] = None

        # Specs with related decisions
        own = [d.decision.lower() for d in memory.decisions if d.spec_id == spec_id]
        for d in memory.decisions:
            if d.spec_id == spec_id:
                continue
            text = d.decision.lower()
            if any(text in mine or mine in text for mine in own):
                related[d.spec_id] = None

        return list(related)

    def get_context_for_spec(self, spec_id: str) -> SpecContext:
        """Compile the memory relevant to a new or in-progress spec."""
        memory = self._require()
        patterns = self.get_reusable_patterns(1)
        related_specs = self.get_related_specs(spec_id)
        decisions = [d for d in memory.decisions if d.spec_id in related_specs]
        constraints = list(memory.constraints)

        return SpecContext(
            patterns=patterns,
            decisions=decisions,
            constraints=constraints,
            related_specs=related_specs,
            summary=self._summarize(patterns, decisions, constraints, related_specs),
        )

    def get_decisions_for_spec(self, spec_id: str) -> list[Decision]:
        return [d for d in self._require().decisions if d.spec_id == spec_id]

    def get_patterns_for_spec(self, spec_id: str) -> list[Pattern]:
        return [
            p for p in self._require().patterns
            if any(e.spec_id == spec_id for e in p.examples)
        ]

    def get_history(self, spec_id: Optional[str] = None, limit: Optional[int] = None) -> list[HistoryEntry]:
        """History entries, oldest first, optionally for one spec and only the last `limit`."""
        entries = self._require().history
        if spec_id is not None:
            entries = [h for h in entries if h.spec_id == spec_id]
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return list(entries)

    def get_stats(self) -> dict:
        """Counts for status displays."""
        memory = self._require()
        by_type = {t: 0 for t in CONSTRAINT_TYPES}
        for c in memory.constraints:
            by_type[c.type] += 1
        return {
            "project_id": memory.project_id,
            "specs": len(memory.specs),
            "decisions": len(memory.decisions),
            "patterns": len(memory.patterns),
            "reusable_patterns": len(self.get_reusable_patterns()),
            "constraints": by_type,
            "history_entries": len(memory.history),
            "storage_path": str(self.memory_file_path),
        }

    # =========================================================================
    # Internals
    # =========================================================================

    def _generate_id(self, prefix: str, content: str) -> str:
        """Time-derived ID; the hash suffix keeps same-millisecond IDs apart."""
        millis = int(time.time() * 1000)
        digest = hashlib.md5(f"{content}{time.time_ns()}{next(_id_sequence)}".encode()).hexdigest()[:6]
        return f"{prefix}-{millis}-{digest}"

    def _add_history(self, spec_id: str, action: str, details: str) -> None:
        memory = self._require()
        memory.history.append(
            HistoryEntry(
                timestamp=utc_now(),
                spec_id=spec_id,
                action=action,
                details=sanitize_string(details)[:MAX_DETAILS_LENGTH],
            )
        )
        # FIFO: drop the oldest entries beyond the cap
        overflow = len(memory.history) - self.config.history_limit
        if overflow > 0:
            del memory.history[:overflow]

    @staticmethod
    def _redacted_text(field: str, value, limit: int) -> str:
        """Sanitize and redact, then bound; the marker can make text longer."""
        redacted = redact_sensitive_info(require_text(field, value))
        if len(redacted) > limit:
            raise FieldTooLongError(field, limit)
        return redacted

    def _find_pattern(self, name: str) -> Optional[Pattern]:
        wanted = name.lower()
        for pattern in self._require().patterns:
            if pattern.name.lower() == wanted:
                return pattern
        return None

    @staticmethod
    def _clean_example(example: Union[PatternExample, dict]) -> PatternExample:
        if isinstance(example, PatternExample):
            example = example.model_dump()
        if not isinstance(example, dict):
            raise ValidationError(f"Pattern example must be a mapping, got {type(example).__name__}")
        spec_id = require_spec_id(example.get("spec_id", example.get("specId")))
        context = require_text("context", example.get("context"), MAX_CONTEXT_LENGTH)
        snippet = example.get("snippet")
        if snippet is not None:
            if not isinstance(snippet, str):
                raise ValidationError("Pattern example snippet must be a string")
            snippet = sanitize_string(snippet) or None
        return PatternExample(spec_id=spec_id, context=context, snippet=snippet)

    @staticmethod
    def _merge_examples(current: list[PatternExample], new: list[PatternExample]) -> list[PatternExample]:
        merged = list(current)
        seen = {(e.spec_id, e.context) for e in merged}
        for example in new:
            if len(merged) >= MAX_EXAMPLES:
                break
            key = (example.spec_id, example.context)
            if key not in seen:
                seen.add(key)
                merged.append(example)
        return merged

    @staticmethod
    def _summarize(
        patterns: list[Pattern],
        decisions: list[Decision],
        constraints: list[Constraint],
        related_specs: list[str],
    ) -> str:
        parts = []

        if patterns:
            top = ", ".join(f'"{p.name}" ({p.usage_count} uses)' for p in patterns[:5])
            parts.append(f"Project has {len(patterns)} reusable patterns, including: {top}")

        if decisions:
            parts.append(f"{len(decisions)} architectural decisions from related specs available as reference")

        if constraints:
            technical = sum(1 for c in constraints if c.type == "technical")
            architectural = sum(1 for c in constraints if c.type == "architectural")
            business = sum(1 for c in constraints if c.type == "business")
            parts.append(
                f"{len(constraints)} project constraints "
                f"({technical} technical, {architectural} architectural, {business} business)"
            )

        if related_specs:
            parts.append(f"{len(related_specs)} related specs share patterns or decisions with this spec")

        return ". ".join(parts) or "No prior project context available"
