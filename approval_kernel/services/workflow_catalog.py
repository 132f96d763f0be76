"""
approval_kernel.services.workflow_catalog -- Workflow definition store.

Responsibility:
    Publishes, revises, activates and deactivates workflow definitions and
    seeds the catalog with configured defaults.  Definitions are validated
    by the pure ``approval_engines.workflow_matching.validate_definition``
    before they are persisted.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/, engines.

Invariants enforced:
    - Immutable once published: a revision is a new row (version + 1,
      ``supersedes_id`` pointing at the prior version) and the prior
      version is deactivated.  Stage templates are never edited.
    - Only structurally valid definitions are stored (stages contiguous
      from 1, exactly one approver kind, positive escalation hours,
      min_amount <= max_amount).

Failure modes:
    - InvalidWorkflowDefinitionError on validation failure.
    - WorkflowNotFoundError on unknown workflow id.

The caller owns the session and its transaction; the catalog only flushes.
"""

from __future__ import annotations

from dataclasses import replace
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from approval_engines.workflow_matching import validate_definition
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.workflow import (
    Applicability,
    StageTemplate,
    WorkflowDefinition,
)
from approval_kernel.exceptions import (
    InvalidWorkflowDefinitionError,
    WorkflowNotFoundError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.workflow import WorkflowDefinitionModel

logger = get_logger("services.workflow_catalog")


class WorkflowCatalog:
    """Stores immutable-once-published workflow definitions."""

    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def publish(
        self,
        name: str,
        applicability: Applicability,
        stages: tuple[StageTemplate, ...] | list[StageTemplate],
        description: str = "",
        created_by: str | None = None,
        is_active: bool = True,
    ) -> WorkflowDefinition:
        """Validate and store a new definition at version 1."""
        definition = WorkflowDefinition(
            workflow_id=uuid4(),
            name=name,
            description=description,
            applicability=applicability,
            stages=tuple(stages),
            is_active=is_active,
            version=1,
            created_at=self._clock.now(),
        )
        return self._store(definition, created_by)

    def revise(
        self,
        workflow_id: UUID,
        *,
        name: str | None = None,
        applicability: Applicability | None = None,
        stages: tuple[StageTemplate, ...] | list[StageTemplate] | None = None,
        description: str | None = None,
        created_by: str | None = None,
    ) -> WorkflowDefinition:
        """Create the next version of a definition by copy.

        Unspecified fields are carried over from the current version.  The
        current version is deactivated; instances already running against
        it keep their snapshot.
        """
        current_model = self._get_model(workflow_id)
        current = current_model.to_dto()

        revised = replace(
            current,
            workflow_id=uuid4(),
            name=name if name is not None else current.name,
            description=description if description is not None else current.description,
            applicability=applicability if applicability is not None else current.applicability,
            stages=tuple(stages) if stages is not None else current.stages,
            is_active=True,
            version=current.version + 1,
            created_at=self._clock.now(),
            supersedes_id=current.workflow_id,
        )

        stored = self._store(revised, created_by)
        current_model.is_active = False
        self._session.flush()
        logger.info(
            "workflow_revised",
            extra={
                "workflow_id": str(stored.workflow_id),
                "supersedes_id": str(current.workflow_id),
                "version": stored.version,
            },
        )
        return stored

    def deactivate(self, workflow_id: UUID) -> WorkflowDefinition:
        return self._set_active(workflow_id, False)

    def activate(self, workflow_id: UUID) -> WorkflowDefinition:
        return self._set_active(workflow_id, True)

    def seed_defaults(self, definitions: list[WorkflowDefinition]) -> int:
        """Publish ``definitions`` only if the catalog is empty.

        Returns:
            Number of definitions created (0 when the catalog already had
            content).
        """
        existing = self._session.scalar(
            select(func.count()).select_from(WorkflowDefinitionModel)
        )
        if existing:
            logger.info("workflow_seed_skipped", extra={"existing": existing})
            return 0

        for d in definitions:
            self.publish(
                name=d.name,
                applicability=d.applicability,
                stages=d.stages,
                description=d.description,
                created_by="system",
                is_active=d.is_active,
            )
        logger.info("workflow_seed_completed", extra={"created_count": len(definitions)})
        return len(definitions)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, workflow_id: UUID) -> WorkflowDefinition:
        return self._get_model(workflow_id).to_dto()

    def list_active(self) -> list[WorkflowDefinition]:
        stmt = (
            select(WorkflowDefinitionModel)
            .where(WorkflowDefinitionModel.is_active.is_(True))
            .order_by(WorkflowDefinitionModel.name, WorkflowDefinitionModel.version)
        )
        return [m.to_dto() for m in self._session.scalars(stmt).all()]

    def list_all(self) -> list[WorkflowDefinition]:
        stmt = select(WorkflowDefinitionModel).order_by(
            WorkflowDefinitionModel.name, WorkflowDefinitionModel.version
        )
        return [m.to_dto() for m in self._session.scalars(stmt).all()]

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _store(self, definition: WorkflowDefinition, created_by: str | None) -> WorkflowDefinition:
        errors = validate_definition(definition)
        if errors:
            logger.warning(
                "workflow_definition_invalid",
                extra={"workflow_name": definition.name, "errors": list(errors)},
            )
            raise InvalidWorkflowDefinitionError(definition.name, errors)

        model = WorkflowDefinitionModel.from_dto(definition, created_by=created_by)
        self._session.add(model)
        self._session.flush()

        logger.info(
            "workflow_published",
            extra={
                "workflow_id": str(definition.workflow_id),
                "workflow_name": definition.name,
                "version": definition.version,
                "stage_count": definition.stage_count,
            },
        )
        return model.to_dto()

    def _get_model(self, workflow_id: UUID) -> WorkflowDefinitionModel:
        model = self._session.get(WorkflowDefinitionModel, workflow_id)
        if model is None:
            raise WorkflowNotFoundError(str(workflow_id))
        return model

    def _set_active(self, workflow_id: UUID, active: bool) -> WorkflowDefinition:
        model = self._get_model(workflow_id)
        if model.is_active != active:
            model.is_active = active
            self._session.flush()
            logger.info(
                "workflow_activated" if active else "workflow_deactivated",
                extra={"workflow_id": str(workflow_id)},
            )
        return model.to_dto()
