"""
Domain models — Pydantic types for the pipeline.

All models are re-exported here for convenient access:

    from deployline.core.models import RunContext, StageResult, RunReport
"""

from deployline.core.models.action import Action, Receipt
from deployline.core.models.config import (
    DeploymentSettings,
    ImageSettings,
    ManifestFile,
    NotificationSettings,
    PipelineConfig,
    RolloutSettings,
)
from deployline.core.models.run import (
    STAGE_ORDER,
    ClusterContext,
    Identity,
    ImageReference,
    RunContext,
    RunReport,
    StageResult,
)
from deployline.core.models.state import PipelineState, RunRecord

__all__ = [
    # action.py
    "Action",
    # run.py
    "ClusterContext",
    # config.py
    "DeploymentSettings",
    "Identity",
    "ImageReference",
    "ImageSettings",
    "ManifestFile",
    "NotificationSettings",
    "PipelineConfig",
    # state.py
    "PipelineState",
    "Receipt",
    "RolloutSettings",
    "RunContext",
    "RunRecord",
    "RunReport",
    "STAGE_ORDER",
    "StageResult",
]
