"""
approval_config -- YAML configuration for the approval engine.

Responsibility:
    Loads engine settings and seed workflow definitions from YAML and
    compiles the workflows into validated domain ``WorkflowDefinition``
    objects.  ``get_default_config()`` returns the configuration shipped
    with the package.

Architecture position:
    Configuration -- sits above ``approval_kernel.domain`` and
    ``approval_engines``.  The kernel MUST NEVER import from
    ``approval_config``; callers pass compiled definitions and settings in.

Failure modes:
    - ``FileNotFoundError`` -- missing configuration file.
    - ``ConfigCompilationError`` -- one or more workflows are invalid.
"""

from __future__ import annotations

from pathlib import Path

from approval_config.compiler import compile_workflow, compile_workflows
from approval_config.loader import compute_checksum, load_config
from approval_config.schema import (
    ApprovalConfiguration,
    EngineSettings,
    EscalationDef,
    StageDef,
    WorkflowDef,
)
from approval_kernel.logging_config import get_logger

logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "approvals.yaml"


def get_default_config(path: Path | str | None = None) -> ApprovalConfiguration:
    """Load the configuration at ``path`` (or the packaged default)."""
    config = load_config(path or DEFAULT_CONFIG_PATH)
    logger.info(
        "approval_config_loaded",
        extra={
            "source": config.source,
            "checksum": config.checksum,
            "workflow_count": len(config.workflows),
        },
    )
    return config


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "ApprovalConfiguration",
    "EngineSettings",
    "EscalationDef",
    "StageDef",
    "WorkflowDef",
    "compile_workflow",
    "compile_workflows",
    "compute_checksum",
    "get_default_config",
    "load_config",
]
