"""Central package for engine data models."""

from .artifact_models import (
    BudgetArtifact,
    BudgetCategory,
    BudgetItem,
    Character,
    CharactersArtifact,
    CoverageShot,
    DomainArtifact,
    Location,
    LocationsArtifact,
    ScheduleArtifact,
    ScheduleDay,
    SoundArtifact,
    SoundAsset,
    StoryboardArtifact,
    StoryboardFrame,
    domain_artifact_adapter,
)
from .base import AgentBaseModel
from .request_models import GenerationRequest, ModelCandidate, RawResponse
from .story_models import (
    ActScenes,
    ActSummary,
    ChunkPlan,
    ChunkPlanSet,
    DomainStep,
    InboundRequest,
    OutlineResult,
    OutlineScene,
    ScriptDraft,
    StoryFrame,
)

__all__ = [
    "AgentBaseModel",
    "GenerationRequest",
    "ModelCandidate",
    "RawResponse",
    "OutlineScene",
    "OutlineResult",
    "ActSummary",
    "ActScenes",
    "StoryFrame",
    "ChunkPlan",
    "ChunkPlanSet",
    "ScriptDraft",
    "DomainStep",
    "InboundRequest",
    "Character",
    "CharactersArtifact",
    "CoverageShot",
    "StoryboardFrame",
    "StoryboardArtifact",
    "BudgetItem",
    "BudgetCategory",
    "BudgetArtifact",
    "ScheduleDay",
    "ScheduleArtifact",
    "Location",
    "LocationsArtifact",
    "SoundAsset",
    "SoundArtifact",
    "DomainArtifact",
    "domain_artifact_adapter",
]
