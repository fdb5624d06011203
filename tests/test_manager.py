"""Tests for ProjectMemoryManager."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from specsafe.config import MemoryConfig
from specsafe.memory import (
    EmptyFieldError,
    FieldTooLongError,
    InvalidConstraintTypeError,
    InvalidProjectIdError,
    InvalidSpecIdError,
    NotLoadedError,
    PatternExample,
    ProjectMemoryManager,
    REDACTION_MARKER,
)


class TestLifecycle:
    @pytest.mark.parametrize(
        "call",
        [
            lambda m: m.save(),
            lambda m: m.add_spec("SPEC-001"),
            lambda m: m.add_decision("SPEC-001", "Use Redis", "Caching"),
            lambda m: m.record_pattern("SPEC-001", "cache", "Caching"),
            lambda m: m.add_constraint("technical", "Python 3.10+"),
            lambda m: m.get_reusable_patterns(),
            lambda m: m.get_related_specs("SPEC-001"),
            lambda m: m.get_context_for_spec("SPEC-001"),
            lambda m: m.get_history(),
            lambda m: m.get_stats(),
            lambda m: m.memory,
        ],
    )
    def test_operations_require_load(self, tmp_path: Path, config: MemoryConfig, call):
        manager = ProjectMemoryManager(tmp_path, config)
        with pytest.raises(NotLoadedError, match="Call load\\(\\) first"):
            call(manager)

    def test_load_defaults(self, tmp_path: Path, config: MemoryConfig):
        manager = ProjectMemoryManager(tmp_path, config)
        memory = manager.load("test-project")

        assert manager.is_loaded
        assert memory.project_id == "test-project"
        assert memory.specs == []
        assert memory.decisions == []
        assert memory.patterns == []
        assert memory.constraints == []
        assert memory.history == []

    def test_load_invalid_project_id(self, tmp_path: Path, config: MemoryConfig):
        manager = ProjectMemoryManager(tmp_path, config)
        with pytest.raises(InvalidProjectIdError):
            manager.load("x" * 101)
        assert not manager.is_loaded

    def test_exists(self, manager: ProjectMemoryManager):
        assert not manager.exists()
        manager.save()
        assert manager.exists()
        assert manager.memory_file_path.name == "memory.json"

    def test_round_trip(self, manager: ProjectMemoryManager, tmp_path: Path, config: MemoryConfig):
        manager.add_spec("SPEC-001")
        manager.add_decision("SPEC-001", "Use PostgreSQL", "Relational data", ["MongoDB"])
        manager.record_pattern("SPEC-001", "jwt-auth", "JWT authentication",
                               [{"spec_id": "SPEC-001", "context": "login", "snippet": "verify()"}])
        manager.add_constraint("business", "GDPR compliance", source="legal", spec_id="SPEC-001")
        manager.save()

        reloaded = ProjectMemoryManager(tmp_path, config)
        memory = reloaded.load("test-project")
        assert memory == manager.memory

    def test_loaded_project_id_kept(self, manager: ProjectMemoryManager, tmp_path: Path, config: MemoryConfig):
        manager.save()
        other = ProjectMemoryManager(tmp_path, config)
        assert other.load("another-name").project_id == "test-project"


class TestSpecs:
    def test_add_spec_idempotent(self, manager: ProjectMemoryManager):
        manager.add_spec("SPEC-001")
        manager.add_spec("SPEC-001")

        assert manager.memory.specs == ["SPEC-001"]
        created = [h for h in manager.memory.history if h.action == "created"]
        assert len(created) == 1
        assert created[0].details == "Spec SPEC-001 added to project memory"

    @pytest.mark.parametrize("spec_id", ["", "SPEC 001", "SPEC/../x", "A" * 101])
    def test_invalid_spec_id_leaves_memory_unchanged(self, manager: ProjectMemoryManager, spec_id):
        with pytest.raises(InvalidSpecIdError):
            manager.add_spec(spec_id)
        assert manager.memory.specs == []
        assert manager.memory.history == []

    def test_spec_id_sanitized(self, manager: ProjectMemoryManager):
        manager.add_spec("  SPEC-001\x00")
        assert manager.memory.specs == ["SPEC-001"]


class TestDecisions:
    def test_add_decision(self, manager: ProjectMemoryManager):
        decision = manager.add_decision(
            "SPEC-001", "Use PostgreSQL", "Need ACID guarantees", ["MongoDB", "MySQL"]
        )

        assert decision.id.startswith("DECISION-")
        assert decision.spec_id == "SPEC-001"
        assert decision.alternatives == ["MongoDB", "MySQL"]
        assert manager.memory.decisions == [decision]
        assert manager.memory.history[-1].action == "decision"
        assert manager.memory.history[-1].details == "Decision recorded: Use PostgreSQL"

    def test_ids_unique(self, manager: ProjectMemoryManager):
        ids = {manager.add_decision("SPEC-001", "Same", "Same").id for _ in range(50)}
        assert len(ids) == 50

    def test_alternatives_capped(self, manager: ProjectMemoryManager):
        alternatives = [f"Option {i}" for i in range(15)]
        decision = manager.add_decision("SPEC-001", "Pick one", "Trade-offs", alternatives)
        assert decision.alternatives == alternatives[:10]

    def test_rationale_redacted(self, manager: ProjectMemoryManager):
        decision = manager.add_decision("SPEC-001", "Use JWT", "token: eyJhbGciOiJIUzI1NiJ9...")
        assert REDACTION_MARKER in decision.rationale
        assert "eyJhbGciOiJIUzI1NiJ9" not in decision.rationale

    def test_alternatives_redacted(self, manager: ProjectMemoryManager):
        decision = manager.add_decision(
            "SPEC-001", "Use vault", "Central secrets", ["hardcode password: hunter2"]
        )
        assert "hunter2" not in decision.alternatives[0]

    def test_redacted_text_persisted(self, manager: ProjectMemoryManager):
        manager.add_decision("SPEC-001", "Use Stripe", "api_key: sk-live1234567890abcdef")
        manager.save()
        raw = manager.memory_file_path.read_text(encoding="utf-8")
        assert "sk-live1234567890abcdef" not in raw

    @pytest.mark.parametrize(
        "args, field",
        [
            (("SPEC-001", "", "Rationale"), "decision"),
            (("SPEC-001", "   ", "Rationale"), "decision"),
            (("SPEC-001", "Decision", ""), "rationale"),
        ],
    )
    def test_empty_fields(self, manager: ProjectMemoryManager, args, field):
        with pytest.raises(EmptyFieldError) as exc:
            manager.add_decision(*args)
        assert exc.value.field == field
        assert manager.memory.decisions == []

    def test_rationale_too_long_after_redaction(self, manager: ProjectMemoryManager):
        rationale = ("password=a " * 454).strip()
        assert len(rationale) <= 5000

        with pytest.raises(FieldTooLongError) as exc:
            manager.add_decision("SPEC-001", "Use vault", rationale)
        assert exc.value.field == "rationale"
        assert manager.memory.decisions == []
        assert manager.memory.history == []

    def test_alternative_too_long_after_redaction(self, manager: ProjectMemoryManager):
        alternative = ("password=a " * 91).strip()
        assert len(alternative) <= 1000

        with pytest.raises(FieldTooLongError) as exc:
            manager.add_decision("SPEC-001", "Use vault", "Central secrets", [alternative])
        assert exc.value.field == "alternatives"
        assert manager.memory.decisions == []

    def test_redacted_rationale_within_limit(self, manager: ProjectMemoryManager):
        decision = manager.add_decision("SPEC-001", "Use vault", "password=a")
        assert decision.rationale == f"password={REDACTION_MARKER}"

    def test_too_long(self, manager: ProjectMemoryManager):
        with pytest.raises(FieldTooLongError):
            manager.add_decision("SPEC-001", "x" * 1001, "Rationale")
        with pytest.raises(FieldTooLongError):
            manager.add_decision("SPEC-001", "Decision", "x" * 5001)
        assert manager.memory.decisions == []
        assert manager.memory.history == []

    def test_invalid_spec_id(self, manager: ProjectMemoryManager):
        with pytest.raises(InvalidSpecIdError):
            manager.add_decision("bad id", "Decision", "Rationale")


class TestPatterns:
    def test_new_pattern(self, manager: ProjectMemoryManager):
        pattern = manager.record_pattern(
            "SPEC-001", "jwt-auth", "JWT authentication",
            [{"spec_id": "SPEC-001", "context": "login endpoint"}],
        )

        assert pattern.id.startswith("PATTERN-")
        assert pattern.usage_count == 1
        assert len(pattern.examples) == 1
        assert manager.memory.history[-1].details == 'New pattern "jwt-auth" recorded'

    def test_case_insensitive_merge(self, manager: ProjectMemoryManager):
        manager.record_pattern("SPEC-001", "JWT-Auth", "JWT authentication",
                               [{"spec_id": "SPEC-001", "context": "login"}])
        pattern = manager.record_pattern("SPEC-002", "jwt-auth", "Other description",
                                         [{"spec_id": "SPEC-002", "context": "refresh"}])

        assert len(manager.memory.patterns) == 1
        assert pattern.usage_count == 2
        assert pattern.name == "JWT-Auth"
        assert pattern.description == "JWT authentication"
        assert [e.spec_id for e in pattern.examples] == ["SPEC-001", "SPEC-002"]
        assert manager.memory.history[-1].details == 'Pattern "JWT-Auth" used again'

    def test_duplicate_examples_not_repeated(self, manager: ProjectMemoryManager):
        example = {"spec_id": "SPEC-001", "context": "login"}
        manager.record_pattern("SPEC-001", "jwt-auth", "JWT", [example])
        pattern = manager.record_pattern("SPEC-001", "jwt-auth", "JWT", [example])
        assert len(pattern.examples) == 1
        assert pattern.usage_count == 2

    def test_examples_capped(self, manager: ProjectMemoryManager):
        examples = [{"spec_id": f"SPEC-{i:03d}", "context": f"use {i}"} for i in range(25)]
        pattern = manager.record_pattern("SPEC-001", "crud", "CRUD endpoints", examples)
        assert len(pattern.examples) <= 20

        more = [{"spec_id": "SPEC-100", "context": "late"}]
        pattern = manager.record_pattern("SPEC-100", "crud", "CRUD endpoints", more)
        assert len(pattern.examples) <= 20

    def test_example_forms(self, manager: ProjectMemoryManager):
        pattern = manager.record_pattern(
            "SPEC-001", "repository", "Repository layer",
            [
                PatternExample(spec_id="SPEC-001", context="users"),
                {"specId": "SPEC-002", "context": "orders", "snippet": "class OrderRepo"},
            ],
        )
        assert [e.spec_id for e in pattern.examples] == ["SPEC-001", "SPEC-002"]
        assert pattern.examples[1].snippet == "class OrderRepo"

    def test_invalid_example_leaves_memory_unchanged(self, manager: ProjectMemoryManager):
        with pytest.raises(InvalidSpecIdError):
            manager.record_pattern("SPEC-001", "jwt-auth", "JWT",
                                   [{"spec_id": "not valid!", "context": "x"}])
        assert manager.memory.patterns == []

    def test_empty_name(self, manager: ProjectMemoryManager):
        with pytest.raises(EmptyFieldError):
            manager.record_pattern("SPEC-001", "  ", "Description")

    def test_name_too_long(self, manager: ProjectMemoryManager):
        with pytest.raises(FieldTooLongError):
            manager.record_pattern("SPEC-001", "x" * 101, "Description")

    def test_reusable_patterns(self, manager: ProjectMemoryManager):
        manager.record_pattern("SPEC-001", "once", "Used once")
        for spec in ("SPEC-001", "SPEC-002"):
            manager.record_pattern(spec, "twice", "Used twice")
        for spec in ("SPEC-001", "SPEC-002", "SPEC-003"):
            manager.record_pattern(spec, "thrice", "Used three times")

        assert [p.name for p in manager.get_reusable_patterns()] == ["thrice", "twice"]
        assert [p.name for p in manager.get_reusable_patterns(3)] == ["thrice"]
        assert len(manager.get_reusable_patterns(1)) == 3


class TestConstraints:
    def test_add_constraint(self, manager: ProjectMemoryManager):
        constraint = manager.add_constraint("architectural", "Must use microservices", source="ADR-7")
        assert constraint.id.startswith("CONSTRAINT-")
        assert constraint.source == "ADR-7"
        assert constraint.spec_id is None
        assert manager.memory.constraints == [constraint]

    def test_invalid_type(self, manager: ProjectMemoryManager):
        with pytest.raises(InvalidConstraintTypeError):
            manager.add_constraint("legal", "Something")
        assert manager.memory.constraints == []

    def test_empty_description(self, manager: ProjectMemoryManager):
        with pytest.raises(EmptyFieldError):
            manager.add_constraint("technical", "")

    def test_invalid_spec_id(self, manager: ProjectMemoryManager):
        with pytest.raises(InvalidSpecIdError):
            manager.add_constraint("technical", "Python 3.10+", spec_id="bad id")


class TestHistory:
    def test_history_capped_fifo(self, manager: ProjectMemoryManager):
        for i in range(1100):
            manager.add_spec(f"SPEC-{i}")

        history = manager.memory.history
        assert len(history) == 1000
        assert history[0].spec_id == "SPEC-100"
        assert history[-1].spec_id == "SPEC-1099"

    def test_configured_limit(self, tmp_path: Path):
        manager = ProjectMemoryManager(tmp_path, MemoryConfig(history_limit=5))
        manager.load("test-project")
        for i in range(8):
            manager.add_spec(f"SPEC-{i}")
        assert [h.spec_id for h in manager.memory.history] == [f"SPEC-{i}" for i in range(3, 8)]

    def test_get_history_filters(self, manager: ProjectMemoryManager):
        manager.add_spec("SPEC-001")
        manager.add_spec("SPEC-002")
        manager.add_decision("SPEC-001", "Use Redis", "Caching")

        assert len(manager.get_history()) == 3
        assert [h.action for h in manager.get_history("SPEC-001")] == ["created", "decision"]
        assert [h.spec_id for h in manager.get_history(limit=1)] == ["SPEC-001"]
        assert manager.get_history(limit=0) == []


class TestQueries:
    def test_related_specs_by_pattern(self, manager: ProjectMemoryManager):
        manager.record_pattern("SPEC-001", "jwt-auth", "JWT", [
            {"spec_id": "SPEC-001", "context": "login"},
            {"spec_id": "SPEC-002", "context": "refresh"},
            {"spec_id": "SPEC-003", "context": "logout"},
        ])
        assert manager.get_related_specs("SPEC-001") == ["SPEC-002", "SPEC-003"]
        assert manager.get_related_specs("SPEC-004") == []

    def test_related_specs_by_decision(self, manager: ProjectMemoryManager):
        manager.add_decision("SPEC-001", "Use PostgreSQL", "ACID")
        manager.add_decision("SPEC-002", "Use PostgreSQL for analytics", "Reuse")
        manager.add_decision("SPEC-003", "Use Redis", "Cache")

        assert manager.get_related_specs("SPEC-001") == ["SPEC-002"]
        assert manager.get_related_specs("SPEC-002") == ["SPEC-001"]

    def test_related_specs_never_include_self(self, manager: ProjectMemoryManager):
        manager.record_pattern("SPEC-001", "p", "d", [{"spec_id": "SPEC-001", "context": "a"}])
        manager.add_decision("SPEC-001", "Use PostgreSQL", "ACID")
        manager.add_decision("SPEC-001", "Use PostgreSQL replicas", "Reads")
        assert "SPEC-001" not in manager.get_related_specs("SPEC-001")

    def test_context_for_spec(self, manager: ProjectMemoryManager):
        manager.record_pattern("SPEC-001", "jwt-auth", "JWT", [
            {"spec_id": "SPEC-001", "context": "login"},
            {"spec_id": "SPEC-002", "context": "refresh"},
        ])
        manager.add_decision("SPEC-002", "Use Redis sessions", "Fast")
        manager.add_constraint("technical", "Python 3.10+")
        manager.add_constraint("business", "GDPR")

        context = manager.get_context_for_spec("SPEC-001")
        assert [p.name for p in context.patterns] == ["jwt-auth"]
        assert [d.decision for d in context.decisions] == ["Use Redis sessions"]
        assert len(context.constraints) == 2
        assert context.related_specs == ["SPEC-002"]
        assert 'Project has 1 reusable patterns, including: "jwt-auth" (1 uses)' in context.summary
        assert "2 project constraints (1 technical, 0 architectural, 1 business)" in context.summary
        assert "1 related specs" in context.summary

    def test_context_for_empty_memory(self, manager: ProjectMemoryManager):
        context = manager.get_context_for_spec("SPEC-001")
        assert context.summary == "No prior project context available"
        assert context.related_specs == []

    def test_per_spec_queries(self, manager: ProjectMemoryManager):
        manager.add_decision("SPEC-001", "Use Redis", "Cache")
        manager.add_decision("SPEC-002", "Use Kafka", "Events")
        manager.record_pattern("SPEC-002", "outbox", "Outbox", [{"spec_id": "SPEC-002", "context": "orders"}])

        assert [d.decision for d in manager.get_decisions_for_spec("SPEC-001")] == ["Use Redis"]
        assert manager.get_patterns_for_spec("SPEC-001") == []
        assert [p.name for p in manager.get_patterns_for_spec("SPEC-002")] == ["outbox"]

    def test_stats(self, manager: ProjectMemoryManager):
        manager.add_spec("SPEC-001")
        manager.add_decision("SPEC-001", "Use Redis", "Cache")
        manager.record_pattern("SPEC-001", "cache-aside", "Cache aside")
        manager.record_pattern("SPEC-002", "cache-aside", "Cache aside")
        manager.add_constraint("architectural", "Stateless services")

        stats = manager.get_stats()
        assert stats["project_id"] == "test-project"
        assert stats["specs"] == 1
        assert stats["decisions"] == 1
        assert stats["patterns"] == 1
        assert stats["reusable_patterns"] == 1
        assert stats["constraints"] == {"technical": 0, "business": 0, "architectural": 1}
        assert stats["history_entries"] == 4
        assert stats["storage_path"].endswith("memory.json")


class TestTransaction:
    def test_saves_on_exit(self, tmp_path: Path, config: MemoryConfig):
        manager = ProjectMemoryManager(tmp_path, config)
        with manager.transaction("test-project") as memory:
            manager.add_spec("SPEC-001")
            assert memory.specs == ["SPEC-001"]

        data = json.loads(manager.memory_file_path.read_text(encoding="utf-8"))
        assert data["specs"] == ["SPEC-001"]
        assert not manager.store.lock_file.exists()

    def test_sees_previous_writer(self, tmp_path: Path, config: MemoryConfig):
        first = ProjectMemoryManager(tmp_path, config)
        second = ProjectMemoryManager(tmp_path, config)
        with first.transaction("test-project"):
            first.add_spec("SPEC-001")
        with second.transaction("test-project"):
            second.add_spec("SPEC-002")

        assert second.memory.specs == ["SPEC-001", "SPEC-002"]

    def test_nothing_saved_on_error(self, tmp_path: Path, config: MemoryConfig):
        manager = ProjectMemoryManager(tmp_path, config)
        with pytest.raises(RuntimeError):
            with manager.transaction("test-project"):
                manager.add_spec("SPEC-001")
                raise RuntimeError("abort")

        assert not manager.exists()
        assert not manager.store.lock_file.exists()
