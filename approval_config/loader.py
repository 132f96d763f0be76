"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads an approval configuration YAML document and parses it into typed
``approval_config.schema`` dataclass instances.  Compilation into domain
workflow definitions is the compiler's job; the loader only maps keys.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  Consumed by
``approval_config.get_default_config`` and the command line.  Has no
dependency on the kernel's database or services.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Amounts are kept as decimal strings; YAML floats never reach ``Decimal``
  through binary floating point.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.
* ``APPROVALS_DATABASE_URL`` in the environment overrides the configured
  database URL.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys in parsed dict  -> ``KeyError`` propagates.
* Wrongly typed values -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import os
from pathlib import Path
from typing import Any

import yaml

from approval_config.schema import (
    ApprovalConfiguration,
    EngineSettings,
    EscalationDef,
    StageDef,
    WorkflowDef,
)

DATABASE_URL_ENV = "APPROVALS_DATABASE_URL"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def parse_amount(value: Any) -> str | None:
    """Normalize a YAML amount (int, float, str or null) to a decimal string."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"Cannot parse amount from {value!r}")
    if isinstance(value, (int, float, str)):
        return str(value).strip()
    raise ValueError(f"Cannot parse amount from {value!r}")


def parse_settings(data: dict[str, Any]) -> EngineSettings:
    """Parse ``EngineSettings``; missing keys keep their defaults."""
    defaults = EngineSettings()
    database_url = os.environ.get(DATABASE_URL_ENV) or data.get(
        "database_url", defaults.database_url
    )
    return EngineSettings(
        tick_interval_seconds=float(
            data.get("tick_interval_seconds", defaults.tick_interval_seconds)
        ),
        lock_timeout_seconds=float(
            data.get("lock_timeout_seconds", defaults.lock_timeout_seconds)
        ),
        strict_workflow_matching=bool(
            data.get("strict_workflow_matching", defaults.strict_workflow_matching)
        ),
        max_conflict_retries=int(
            data.get("max_conflict_retries", defaults.max_conflict_retries)
        ),
        database_url=database_url,
    )


def parse_stage(data: dict[str, Any]) -> StageDef:
    """
    Parse a ``StageDef`` from a dict.

    Preconditions:
        - ``data`` must contain ``stage_number`` and ``name``.
    Raises:
        KeyError: if required keys are missing.
    """
    escalation_data = data.get("escalation")
    escalation = None
    if escalation_data:
        escalation = EscalationDef(
            after_hours=escalation_data["after_hours"],
            escalate_to=str(escalation_data["escalate_to"]),
        )
    return StageDef(
        stage_number=data["stage_number"],
        name=data["name"],
        approver_role=data.get("approver_role"),
        approver_user=data.get("approver_user"),
        approval_type=str(data.get("approval_type", "SINGLE")).upper(),
        escalation=escalation,
    )


def parse_workflow(data: dict[str, Any]) -> WorkflowDef:
    """Parse a ``WorkflowDef`` from a dict."""
    return WorkflowDef(
        name=data["name"],
        description=data.get("description", "") or "",
        requisition_type=data.get("requisition_type"),
        min_amount=parse_amount(data.get("min_amount")),
        max_amount=parse_amount(data.get("max_amount")),
        is_active=bool(data.get("is_active", True)),
        stages=tuple(parse_stage(s) for s in data.get("stages", [])),
    )


def parse_configuration(data: dict[str, Any], source: str | None = None) -> ApprovalConfiguration:
    """Parse a whole configuration document."""
    return ApprovalConfiguration(
        settings=parse_settings(data.get("settings", {}) or {}),
        workflows=tuple(parse_workflow(w) for w in data.get("workflows", []) or []),
        checksum=compute_checksum(data),
        source=source,
    )


def load_config(path: Path | str) -> ApprovalConfiguration:
    """Load and parse a configuration YAML file."""
    path = Path(path)
    return parse_configuration(load_yaml_file(path), source=str(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Postconditions:
        - Identical ``data`` always produces identical checksums
          (deterministic).
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
