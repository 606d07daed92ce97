"""Structured actions exposed to the combined classification call."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, Field
from republic import Tool, tool_from_model

from switchyard.handlers import HandlerCatalog
from switchyard.types import EntityType, HandlerKind


class SocraticIntent(BaseModel):
    """Reflective exploration, Socratic questioning, insight into a case or approach."""

    exploration_topic: str = Field(..., description="Main topic to explore, e.g. patient resistance, transference")
    depth_level: Literal["surface", "moderate", "deep"] = Field(..., description="Depth of the exploration")
    clinical_context: str | None = Field(default=None, description="Specific clinical context")


class DocumentationIntent(BaseModel):
    """Session summaries, clinical notes, treatment plans or progress documentation."""

    summary_type: Literal["session", "progress", "assessment", "treatment_plan", "general"] = Field(
        ..., description="Kind of document requested"
    )
    key_elements: list[str] = Field(default_factory=list, description="Elements to include, e.g. goals, interventions")
    format: Literal["narrative", "structured", "bullet_points", "professional"] | None = Field(
        default=None, description="Preferred format"
    )


class AcademicIntent(BaseModel):
    """Scientific evidence, literature review, studies supporting a technique or claim."""

    search_terms: list[str] = Field(..., description="Search terms, e.g. EMDR, PTSD, cognitive therapy")
    target_population: str | None = Field(default=None, description="Population of interest")
    technique: str | None = Field(default=None, description="Therapeutic technique or intervention")
    evidence_type: Literal["meta_analysis", "rct", "case_studies", "systematic_reviews", "any"] | None = Field(
        default=None, description="Preferred kind of evidence"
    )


INTENT_MODELS: dict[HandlerKind, type[BaseModel]] = {
    HandlerKind.SOCRATIC: SocraticIntent,
    HandlerKind.DOCUMENTATION: DocumentationIntent,
    HandlerKind.ACADEMIC: AcademicIntent,
}


class TechniqueItem(BaseModel):
    name: str
    category: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    context: str | None = None


class PopulationItem(BaseModel):
    group: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    age_range: str | None = None
    characteristics: list[str] = Field(default_factory=list)


class ConditionItem(BaseModel):
    name: str
    category: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    severity: str | None = None


class DocumentationProcessItem(BaseModel):
    process: str
    format_type: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    context: str | None = None


class ValidationItem(BaseModel):
    query_type: str
    subject_matter: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    evidence_level: str | None = None


class ExplorationItem(BaseModel):
    exploration_type: str
    subject_matter: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    depth: str | None = None


class ConceptItem(BaseModel):
    concept: str
    type: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    relevance: str | None = None


class TechniquesAction(BaseModel):
    """Therapeutic techniques mentioned in the text."""

    techniques: list[TechniqueItem]


class PopulationsAction(BaseModel):
    """Target populations mentioned in the text."""

    populations: list[PopulationItem]


class ConditionsAction(BaseModel):
    """Disorders and clinical conditions mentioned in the text."""

    conditions: list[ConditionItem]


class DocumentationProcessesAction(BaseModel):
    """Clinical documentation processes and formats mentioned in the text."""

    processes: list[DocumentationProcessItem]


class AcademicValidationAction(BaseModel):
    """Requests for academic validation or scientific evidence."""

    validations: list[ValidationItem]


class SocraticExplorationAction(BaseModel):
    """Requests for reflective exploration or Socratic questioning."""

    explorations: list[ExplorationItem]


class ClinicalConceptsAction(BaseModel):
    """General clinical concepts and assessment instruments."""

    concepts: list[ConceptItem]


@dataclass(frozen=True)
class EntityAction:
    """Maps one entity action onto the entity taxonomy."""

    name: str
    entity_type: EntityType
    model: type[BaseModel]
    items_field: str
    item_model: type[BaseModel]
    value_field: str
    description: str

    def required_item_fields(self) -> list[str]:
        return required_fields(self.item_model)


ENTITY_ACTIONS: tuple[EntityAction, ...] = (
    EntityAction(
        "extract_therapeutic_techniques",
        EntityType.THERAPEUTIC_TECHNIQUE,
        TechniquesAction,
        "techniques",
        TechniqueItem,
        "name",
        "Extract therapeutic techniques mentioned in the text",
    ),
    EntityAction(
        "extract_target_populations",
        EntityType.TARGET_POPULATION,
        PopulationsAction,
        "populations",
        PopulationItem,
        "group",
        "Extract target populations mentioned in the text",
    ),
    EntityAction(
        "extract_disorders_conditions",
        EntityType.DISORDER_CONDITION,
        ConditionsAction,
        "conditions",
        ConditionItem,
        "name",
        "Extract disorders and clinical conditions mentioned in the text",
    ),
    EntityAction(
        "extract_documentation_processes",
        EntityType.DOCUMENTATION_PROCESS,
        DocumentationProcessesAction,
        "processes",
        DocumentationProcessItem,
        "process",
        "Extract clinical documentation processes and formats mentioned in the text",
    ),
    EntityAction(
        "extract_academic_validation",
        EntityType.ACADEMIC_VALIDATION,
        AcademicValidationAction,
        "validations",
        ValidationItem,
        "subject_matter",
        "Extract requests for academic validation, scientific evidence or supporting studies",
    ),
    EntityAction(
        "extract_socratic_exploration",
        EntityType.SOCRATIC_EXPLORATION,
        SocraticExplorationAction,
        "explorations",
        ExplorationItem,
        "subject_matter",
        "Extract requests for reflective exploration, Socratic questioning or insight",
    ),
    EntityAction(
        "extract_clinical_concepts",
        EntityType.CLINICAL_CONCEPT,
        ClinicalConceptsAction,
        "concepts",
        ConceptItem,
        "concept",
        "Extract general clinical concepts and assessment instruments",
    ),
)

ENTITY_ACTIONS_BY_NAME = {action.name: action for action in ENTITY_ACTIONS}


def required_fields(model: type[BaseModel]) -> list[str]:
    return [name for name, info in model.model_fields.items() if info.is_required()]


def _declaration_only(params: BaseModel) -> dict[str, Any]:
    return params.model_dump(mode="json")


def build_classification_tools(catalog: HandlerCatalog) -> list[Tool]:
    """One tool per handler intent followed by every entity action."""

    tools = [
        tool_from_model(
            INTENT_MODELS[profile.kind],
            _declaration_only,
            name=profile.intent_action,
            description=(INTENT_MODELS[profile.kind].__doc__ or profile.title).strip(),
        )
        for profile in catalog
    ]
    tools.extend(
        tool_from_model(action.model, _declaration_only, name=action.name, description=action.description)
        for action in ENTITY_ACTIONS
    )
    return tools
