"""
Acknowledgement workflows: the private "I have read this" gate attached to a
warn or timeout case.

A workflow is OPEN from the moment the case is written until the punished
user presses the button (RESOLVED) or, when an expiry is configured, until it
lapses (EXPIRED). Workflows live in memory only. The button's custom id
(``ack_<caseId>_<0|1>``) carries everything needed to rebuild one after a
restart, together with the case ledger.

State changes happen synchronously inside :meth:`AcknowledgementRegistry.resolve`
with no ``await`` between the check and the transition, so two concurrent
clicks can never both resolve the same workflow.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List

from modledger.datatypes.case_datatypes import CaseAction, utcnow
from modledger.moderation.errors import WorkflowAccessDenied
from modledger.util.logger import get_logger

logger = get_logger("acknowledgement")

ACK_PREFIX = "ack_"


class WorkflowState(Enum):
    OPEN = "open"
    RESOLVED = "resolved"
    EXPIRED = "expired"


@dataclass
class AcknowledgementWorkflow:
    """
    One pending acknowledgement.

    Attributes:
        case_id: Case the user has to acknowledge
        target_user_id: The only user allowed to resolve it
        action_type: Warn or Timeout
        releases_restriction: Whether resolving lifts the target's timeout
        guild_id: Guild the case belongs to
        opened_at: When the workflow was created
        expires_at: When it lapses, ``None`` for never
        channel_id: Private thread backing the workflow, if one was created
        state: Current state
        resolved_at: Set on the OPEN -> RESOLVED transition
    """

    case_id: int
    target_user_id: int
    action_type: CaseAction
    releases_restriction: bool
    guild_id: int
    opened_at: datetime.datetime
    expires_at: datetime.datetime | None = None
    channel_id: int | None = None
    state: WorkflowState = WorkflowState.OPEN
    resolved_at: datetime.datetime | None = None

    @property
    def custom_id(self) -> str:
        return build_custom_id(self.case_id, self.releases_restriction)

    @property
    def is_open(self) -> bool:
        return self.state is WorkflowState.OPEN

    def is_expired(self, now: datetime.datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at


def build_custom_id(case_id: int, releases_restriction: bool) -> str:
    """Component id for the acknowledge button of ``case_id``."""
    return f"{ACK_PREFIX}{case_id}_{'1' if releases_restriction else '0'}"


def parse_custom_id(custom_id: str | None) -> tuple[int, bool] | None:
    """Inverse of :func:`build_custom_id`; ``None`` for anything else."""
    if not custom_id or not custom_id.startswith(ACK_PREFIX):
        return None
    parts = custom_id.split("_")
    if len(parts) != 3 or parts[2] not in ("0", "1"):
        return None
    try:
        case_id = int(parts[1])
    except ValueError:
        return None
    return case_id, parts[2] == "1"


class AcknowledgementRegistry:
    """In-memory table of workflows keyed by case id."""

    def __init__(
        self,
        expiry_minutes: float | None = None,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self.expiry_minutes = expiry_minutes
        self.clock = clock
        self._workflows: Dict[int, AcknowledgementWorkflow] = {}

    def _expiry_from(self, opened_at: datetime.datetime) -> datetime.datetime | None:
        if self.expiry_minutes is None:
            return None
        return opened_at + datetime.timedelta(minutes=self.expiry_minutes)

    def open(
        self,
        case_id: int,
        target_user_id: int,
        action_type: CaseAction,
        releases_restriction: bool,
        guild_id: int,
        channel_id: int | None = None,
    ) -> AcknowledgementWorkflow:
        """Start a workflow for ``case_id``.

        Raises:
            ValueError: A workflow for that case already exists.
        """
        if case_id in self._workflows:
            raise ValueError(f"Acknowledgement workflow for case {case_id} already exists")

        opened_at = self.clock()
        workflow = AcknowledgementWorkflow(
            case_id=case_id,
            target_user_id=target_user_id,
            action_type=action_type,
            releases_restriction=releases_restriction,
            guild_id=guild_id,
            opened_at=opened_at,
            expires_at=self._expiry_from(opened_at),
            channel_id=channel_id,
        )
        self._workflows[case_id] = workflow
        logger.debug(
            "[ACK] Opened workflow for case %s (user %s, releases=%s)",
            case_id, target_user_id, releases_restriction,
        )
        return workflow

    def restore(
        self,
        case_id: int,
        target_user_id: int,
        action_type: CaseAction,
        releases_restriction: bool,
        guild_id: int,
        opened_at: datetime.datetime,
        channel_id: int | None = None,
        resolved: bool = False,
    ) -> AcknowledgementWorkflow:
        """Rebuild a workflow lost in a restart. An existing entry wins."""
        existing = self._workflows.get(case_id)
        if existing is not None:
            return existing

        workflow = AcknowledgementWorkflow(
            case_id=case_id,
            target_user_id=target_user_id,
            action_type=action_type,
            releases_restriction=releases_restriction,
            guild_id=guild_id,
            opened_at=opened_at,
            expires_at=self._expiry_from(opened_at),
            channel_id=channel_id,
            state=WorkflowState.RESOLVED if resolved else WorkflowState.OPEN,
        )
        self._workflows[case_id] = workflow
        logger.debug("[ACK] Restored workflow for case %s (state=%s)", case_id, workflow.state.value)
        return workflow

    def get(self, case_id: int) -> AcknowledgementWorkflow | None:
        return self._workflows.get(case_id)

    def attach_channel(self, case_id: int, channel_id: int | None) -> None:
        workflow = self._workflows.get(case_id)
        if workflow is not None:
            workflow.channel_id = channel_id

    def resolve(self, case_id: int, actor_id: int) -> AcknowledgementWorkflow | None:
        """
        Move the workflow for ``case_id`` to RESOLVED on behalf of ``actor_id``.

        Returns:
            The workflow if this call resolved it; ``None`` if there is no
            such workflow or it is no longer OPEN (already resolved or expired).

        Raises:
            WorkflowAccessDenied: ``actor_id`` is not the punished user. The
            workflow is left untouched.
        """
        workflow = self._workflows.get(case_id)
        if workflow is None:
            return None
        if actor_id != workflow.target_user_id:
            raise WorkflowAccessDenied()
        if not workflow.is_open:
            return None

        now = self.clock()
        if workflow.is_expired(now):
            workflow.state = WorkflowState.EXPIRED
            logger.info("[ACK] Case %s acknowledgement arrived after expiry", case_id)
            return None

        workflow.state = WorkflowState.RESOLVED
        workflow.resolved_at = now
        logger.info("[ACK] Case %s acknowledged by %s", case_id, actor_id)
        return workflow

    def sweep_expired(self) -> List[AcknowledgementWorkflow]:
        """Mark every lapsed OPEN workflow EXPIRED and return them."""
        now = self.clock()
        expired = []
        for workflow in self._workflows.values():
            if workflow.is_open and workflow.is_expired(now):
                workflow.state = WorkflowState.EXPIRED
                expired.append(workflow)
        if expired:
            logger.info("[ACK] %d acknowledgement workflow(s) expired", len(expired))
        return expired

    def open_workflows(self) -> List[AcknowledgementWorkflow]:
        return [workflow for workflow in self._workflows.values() if workflow.is_open]

    def __len__(self) -> int:
        return len(self._workflows)
