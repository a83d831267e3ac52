"""
Pipelines that orchestrate remote operations end to end.

- deployment: folder-aware retrieve/deploy plans executed through the CLI
- export: one bulk query job to a reconciled CSV file
- dml: one bulk ingest job from a CSV file
"""

from sfmigrator.pipelines.deployment import (
    FOLDER_TYPES,
    ComponentProblem,
    DeploymentPipeline,
    DeploymentPlan,
    DeploymentResult,
    DeploymentStep,
    Environment,
    SelectionKey,
    StepKind,
    build_item_plan,
    build_plan,
)
from sfmigrator.pipelines.dml import DmlPipeline, DmlResult
from sfmigrator.pipelines.export import (
    ExportPipeline,
    ExportResult,
    build_query,
    count_csv_rows,
    extract_query_target,
)

__all__ = [
    "FOLDER_TYPES",
    "ComponentProblem",
    "DeploymentPipeline",
    "DeploymentPlan",
    "DeploymentResult",
    "DeploymentStep",
    "Environment",
    "SelectionKey",
    "StepKind",
    "build_item_plan",
    "build_plan",
    "DmlPipeline",
    "DmlResult",
    "ExportPipeline",
    "ExportResult",
    "build_query",
    "count_csv_rows",
    "extract_query_target",
]
