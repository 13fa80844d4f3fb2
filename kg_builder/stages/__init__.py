"""Build stages: parse → enrich → populate, connected by staged JSON artifacts."""

from .enrich import EnrichStage
from .parse import ParseStage
from .populate import PopulateResult, PopulateStage
from .staging import reset_staging

__all__ = ["EnrichStage", "ParseStage", "PopulateResult", "PopulateStage", "reset_staging"]
