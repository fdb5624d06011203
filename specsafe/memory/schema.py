"""
Project Memory Schema

The aggregate persisted to `.specsafe/memory.json` and the value types the
steering engine hands back to collaborators.

The models double as the structural validator: a deserialized memory file
is accepted only if every field type, ID grammar and length bound holds,
otherwise validation fails as a whole. Collection caps (alternatives,
examples, history) are enforced by the manager at write time, not here.
"""

from datetime import datetime, timezone
from typing import Annotated, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .validation import is_valid_project_id, is_valid_spec_id, sanitize_string


ConstraintType = Literal["technical", "business", "architectural"]
HistoryAction = Literal["created", "updated", "completed", "decision", "pattern"]
WarningType = Literal["consistency", "conflict", "deprecation", "missing"]
RecommendationType = Literal["pattern", "decision", "constraint", "best-practice"]
Level = Literal["low", "medium", "high"]

CONSTRAINT_TYPES: tuple[str, ...] = ("technical", "business", "architectural")

MAX_DECISION_LENGTH = 1000
MAX_RATIONALE_LENGTH = 5000
MAX_PATTERN_NAME_LENGTH = 100
MAX_PATTERN_DESCRIPTION_LENGTH = 1000
MAX_CONTEXT_LENGTH = 500
MAX_CONSTRAINT_LENGTH = 500
MAX_DETAILS_LENGTH = 1000


def _bounded(limit: int) -> AfterValidator:
    def check(value: str) -> str:
        value = sanitize_string(value)
        if len(value) > limit:
            raise ValueError(f"must be at most {limit} characters")
        return value
    return AfterValidator(check)


def _spec_id(value: str) -> str:
    if not is_valid_spec_id(value):
        raise ValueError("spec ID must be 1-100 letters, digits, '-' or '_'")
    return sanitize_string(value)


def _project_id(value: str) -> str:
    if not is_valid_project_id(value):
        raise ValueError("project ID must be 1-100 printable characters")
    return sanitize_string(value)


SpecId = Annotated[str, AfterValidator(_spec_id)]
ProjectId = Annotated[str, AfterValidator(_project_id)]
Text = Annotated[str, AfterValidator(sanitize_string)]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class _CamelModel(BaseModel):
    """camelCase on disk, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Decision(_CamelModel):
    """An architectural choice recorded against a spec."""
    id: str
    spec_id: SpecId
    decision: Annotated[str, _bounded(MAX_DECISION_LENGTH)]
    rationale: Annotated[str, _bounded(MAX_RATIONALE_LENGTH)]
    timestamp: datetime
    alternatives: list[Text]


class PatternExample(_CamelModel):
    spec_id: SpecId
    context: Annotated[str, _bounded(MAX_CONTEXT_LENGTH)]
    snippet: Optional[Text] = None


class Pattern(_CamelModel):
    """A reusable design approach observed in one or more specs."""
    id: str
    name: Annotated[str, _bounded(MAX_PATTERN_NAME_LENGTH)]
    description: Annotated[str, _bounded(MAX_PATTERN_DESCRIPTION_LENGTH)]
    examples: list[PatternExample]
    usage_count: int = Field(ge=0)


class Constraint(_CamelModel):
    id: str
    type: ConstraintType
    description: Annotated[str, _bounded(MAX_CONSTRAINT_LENGTH)]
    source: Optional[Text] = None
    spec_id: Optional[SpecId] = None


class HistoryEntry(_CamelModel):
    timestamp: datetime
    spec_id: SpecId
    action: HistoryAction
    details: Annotated[str, _bounded(MAX_DETAILS_LENGTH)]


class ProjectMemory(_CamelModel):
    """Everything SpecSafe remembers about one project."""
    project_id: ProjectId
    specs: list[SpecId]
    decisions: list[Decision]
    patterns: list[Pattern]
    constraints: list[Constraint]
    history: list[HistoryEntry]

    @field_validator("specs")
    @classmethod
    def _dedupe_specs(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))

    @classmethod
    def empty(cls, project_id: str) -> "ProjectMemory":
        return cls(
            project_id=project_id,
            specs=[],
            decisions=[],
            patterns=[],
            constraints=[],
            history=[],
        )

    def to_json_dict(self) -> dict:
        """Serialize with camelCase keys and ISO-8601 timestamps."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Structural validation helpers
# ---------------------------------------------------------------------------

def validate_project_memory(data) -> ProjectMemory:
    """Validate a deserialized memory object. Raises pydantic.ValidationError."""
    return ProjectMemory.model_validate(data)


def _conforms(model: type[BaseModel], data) -> bool:
    try:
        model.model_validate(data)
    except PydanticValidationError:
        return False
    return True


def is_valid_project_memory(data) -> bool:
    return _conforms(ProjectMemory, data)


def is_valid_decision(data) -> bool:
    return _conforms(Decision, data)


def is_valid_pattern(data) -> bool:
    return _conforms(Pattern, data)


def is_valid_constraint(data) -> bool:
    return _conforms(Constraint, data)


def is_valid_history_entry(data) -> bool:
    return _conforms(HistoryEntry, data)


# ---------------------------------------------------------------------------
# Steering output
# ---------------------------------------------------------------------------

class SteeringWarning(_CamelModel):
    type: WarningType
    message: str
    severity: Level
    related_spec_id: Optional[str] = None


class Recommendation(_CamelModel):
    type: RecommendationType
    message: str
    confidence: Level
    pattern_id: Optional[str] = None
    decision_id: Optional[str] = None


class SpecContext(_CamelModel):
    """Memory relevant to one spec, as compiled by the manager."""
    patterns: list[Pattern] = Field(default_factory=list)
    decisions: list[Decision] = Field(default_factory=list)
    constraints: list[Constraint] = Field(default_factory=list)
    related_specs: list[str] = Field(default_factory=list)
    summary: str = ""


class SteeringOutput(_CamelModel):
    """
    Guidance for a spec that is being written.

    Collaborators treat warnings and recommendations as display strings plus
    severity/confidence for formatting.
    """
    context: str
    warnings: list[SteeringWarning] = Field(default_factory=list)
    recommendations: list[Recommendation] = Field(default_factory=list)
    related_decisions: list[Decision] = Field(default_factory=list)

    def to_formatted_string(self) -> str:
        """Render the guidance as a short markdown block."""
        lines = [f"**Project memory:** {self.context}", ""]

        # Warnings first, most severe on top
        order = {"high": 0, "medium": 1, "low": 2}
        for w in sorted(self.warnings, key=lambda w: order[w.severity]):
            where = f" ({w.related_spec_id})" if w.related_spec_id else ""
            lines.append(f"⚠️ [{w.severity}] {w.message}{where}")
        if self.warnings:
            lines.append("")

        for r in self.recommendations:
            lines.append(f"💡 [{r.confidence}] {r.message}")
        if self.recommendations:
            lines.append("")

        if self.related_decisions:
            lines.append("**Related decisions:**")
            for d in self.related_decisions[:10]:
                lines.append(f"  - {d.spec_id}: {d.decision}")
            lines.append("")

        return "\n".join(lines).rstrip() + "\n"
