from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from opentelemetry import trace
from sqlalchemy import Select, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from realty_crm import audit
from realty_crm.core.database import run_in_transaction
from realty_crm.metrics import (
    observe_assignment_cache_repairs,
    observe_assignment_conflict,
    observe_assignment_operation,
)
from realty_crm.otel import annotate
from realty_crm.platform.security.errors import ConflictError, DomainError, NotFoundError, ValidationError
from realty_crm.platform.security.roles import Role
from realty_crm.teams.models import TeamAssignment
from realty_crm.teams.schemas import CacheDriftRead, TeamAssignmentRead
from realty_crm.users.models import User, utcnow
from realty_crm.users.schemas import UserRead


logger = logging.getLogger("realty_crm.teams")
tracer = trace.get_tracer("realty_crm.teams")


def _active_assignment_stmt(agent_id: int) -> Select[tuple[TeamAssignment]]:
    return select(TeamAssignment).where(
        TeamAssignment.agent_id == agent_id,
        TeamAssignment.is_active.is_(True),
    )


@dataclass(slots=True)
class AssignmentLedger:
    """Owns the agent -> team leader graph.

    At most one active ``TeamAssignment`` row exists per agent. The user cache
    fields ``is_assigned``/``assigned_to`` are written in the same transaction as
    the ledger row they mirror, so readers never see them diverge.
    """

    def assign(
        self,
        session: Session,
        team_leader_id: int,
        agent_id: int,
        assigned_by: int | None,
    ) -> TeamAssignmentRead:
        with tracer.start_as_current_span("team.assign") as span:
            annotate(span, agent_id=agent_id, team_leader_id=team_leader_id)

            def work() -> TeamAssignment:
                agent = self._lock_user(session, agent_id)
                self._require_role(session.get(User, team_leader_id), Role.TEAM_LEADER, "Invalid team leader")
                self._require_role(agent, Role.AGENT, "Invalid agent")

                current = session.scalar(_active_assignment_stmt(agent_id))
                if current is not None:
                    raise ConflictError(
                        "Agent is already assigned to a team leader",
                        details={"agent_id": agent_id, "team_leader_id": current.team_leader_id},
                    )

                row = TeamAssignment(
                    team_leader_id=team_leader_id,
                    agent_id=agent_id,
                    assigned_by=assigned_by,
                    is_active=True,
                )
                session.add(row)
                session.flush()
                self._write_cache(agent, team_leader_id)
                session.flush()
                return row

            row = self._run(session, "assign", work, agent_id=agent_id)

        audit.record(
            actor_user_id=assigned_by,
            entity_type="team.assignment",
            entity_id=str(row.id),
            action="team.assigned",
            before=None,
            after={"team_leader_id": team_leader_id, "agent_id": agent_id},
        )
        logger.info(
            "team.assigned",
            extra={"assignment_id": row.id, "agent_id": agent_id, "team_leader_id": team_leader_id, "actor_id": assigned_by},
        )
        return TeamAssignmentRead.model_validate(row)

    def remove(
        self,
        session: Session,
        team_leader_id: int,
        agent_id: int,
        removed_by: int | None = None,
    ) -> TeamAssignmentRead:
        with tracer.start_as_current_span("team.remove") as span:
            annotate(span, agent_id=agent_id, team_leader_id=team_leader_id)

            def work() -> TeamAssignment:
                agent = self._lock_user(session, agent_id)
                current = session.scalar(
                    _active_assignment_stmt(agent_id).where(TeamAssignment.team_leader_id == team_leader_id)
                )
                if agent is None or current is None:
                    raise NotFoundError(
                        "Assignment not found",
                        details={"agent_id": agent_id, "team_leader_id": team_leader_id},
                    )
                if not self._deactivate(session, current.id):
                    raise NotFoundError(
                        "Assignment not found",
                        details={"agent_id": agent_id, "team_leader_id": team_leader_id},
                    )
                self._write_cache(agent, None)
                session.flush()
                return current

            row = self._run(session, "remove", work, agent_id=agent_id)

        audit.record(
            actor_user_id=removed_by,
            entity_type="team.assignment",
            entity_id=str(row.id),
            action="team.removed",
            before={"team_leader_id": team_leader_id, "agent_id": agent_id, "is_active": True},
            after={"team_leader_id": team_leader_id, "agent_id": agent_id, "is_active": False},
        )
        logger.info(
            "team.removed",
            extra={"assignment_id": row.id, "agent_id": agent_id, "team_leader_id": team_leader_id, "actor_id": removed_by},
        )
        return TeamAssignmentRead.model_validate(row)

    def transfer(
        self,
        session: Session,
        current_team_leader_id: int,
        agent_id: int,
        new_team_leader_id: int,
        transferred_by: int | None,
    ) -> TeamAssignmentRead:
        if current_team_leader_id == new_team_leader_id:
            raise ValidationError("Agent is already in this team")

        with tracer.start_as_current_span("team.transfer") as span:
            annotate(span, agent_id=agent_id, team_leader_id=new_team_leader_id)

            def work() -> TeamAssignment:
                agent = self._lock_user(session, agent_id)
                self._require_role(session.get(User, new_team_leader_id), Role.TEAM_LEADER, "Invalid team leader")
                self._require_role(agent, Role.AGENT, "Invalid agent")

                current = session.scalar(_active_assignment_stmt(agent_id))
                if current is None or current.team_leader_id != current_team_leader_id:
                    raise ConflictError(
                        "Current assignment does not match the expected team leader",
                        details={
                            "agent_id": agent_id,
                            "expected_team_leader_id": current_team_leader_id,
                            "actual_team_leader_id": None if current is None else current.team_leader_id,
                        },
                    )
                if not self._deactivate(session, current.id):
                    raise ConflictError(
                        "Assignment changed concurrently",
                        details={"agent_id": agent_id, "expected_team_leader_id": current_team_leader_id},
                    )

                row = TeamAssignment(
                    team_leader_id=new_team_leader_id,
                    agent_id=agent_id,
                    assigned_by=transferred_by,
                    is_active=True,
                )
                session.add(row)
                session.flush()
                self._write_cache(agent, new_team_leader_id)
                session.flush()
                return row

            row = self._run(session, "transfer", work, agent_id=agent_id)

        audit.record(
            actor_user_id=transferred_by,
            entity_type="team.assignment",
            entity_id=str(row.id),
            action="team.transferred",
            before={"team_leader_id": current_team_leader_id, "agent_id": agent_id},
            after={"team_leader_id": new_team_leader_id, "agent_id": agent_id},
        )
        logger.info(
            "team.transferred",
            extra={
                "assignment_id": row.id,
                "agent_id": agent_id,
                "team_leader_id": new_team_leader_id,
                "actor_id": transferred_by,
            },
        )
        return TeamAssignmentRead.model_validate(row)

    def get_current_team_leader(self, session: Session, agent_id: int) -> UserRead | None:
        agent = session.get(User, agent_id)
        if agent is None:
            raise NotFoundError("Agent not found", details={"agent_id": agent_id})
        if not agent.is_assigned or agent.assigned_to is None:
            return None
        leader = session.get(User, agent.assigned_to)
        return UserRead.model_validate(leader) if leader is not None else None

    def get_team_members(self, session: Session, team_leader_id: int) -> set[int]:
        rows = session.scalars(
            select(TeamAssignment.agent_id).where(
                TeamAssignment.team_leader_id == team_leader_id,
                TeamAssignment.is_active.is_(True),
            )
        ).all()
        return set(rows)

    def list_team(self, session: Session, team_leader_id: int) -> list[UserRead]:
        rows = session.scalars(
            select(User)
            .join(TeamAssignment, TeamAssignment.agent_id == User.id)
            .where(TeamAssignment.team_leader_id == team_leader_id, TeamAssignment.is_active.is_(True))
            .order_by(User.name.asc(), User.id.asc())
        ).all()
        return [UserRead.model_validate(item) for item in rows]

    def list_unassigned_agents(self, session: Session) -> list[UserRead]:
        assigned = select(TeamAssignment.agent_id).where(TeamAssignment.is_active.is_(True))
        rows = session.scalars(
            select(User)
            .where(User.role == Role.AGENT.value, User.is_active.is_(True), User.id.not_in(assigned))
            .order_by(User.name.asc(), User.id.asc())
        ).all()
        return [UserRead.model_validate(item) for item in rows]

    def get_assignment_history(self, session: Session, agent_id: int) -> list[TeamAssignmentRead]:
        rows = session.scalars(
            select(TeamAssignment)
            .where(TeamAssignment.agent_id == agent_id)
            .order_by(TeamAssignment.assigned_at.desc(), TeamAssignment.id.desc())
        ).all()
        return [TeamAssignmentRead.model_validate(item) for item in rows]

    def verify_cache(self, session: Session) -> list[CacheDriftRead]:
        ledger = self._ledger_snapshot(session)
        users = session.scalars(
            select(User).where((User.is_assigned.is_(True)) | (User.id.in_(list(ledger.keys())))).order_by(User.id.asc())
        ).all()
        drift: list[CacheDriftRead] = []
        for user in users:
            expected = ledger.get(user.id)
            if user.is_assigned == (expected is not None) and user.assigned_to == expected:
                continue
            drift.append(
                CacheDriftRead(
                    user_id=user.id,
                    cached_is_assigned=user.is_assigned,
                    cached_assigned_to=user.assigned_to,
                    ledger_team_leader_id=expected,
                )
            )
        return drift

    def repair_cache(self, session: Session, repaired_by: int | None = None) -> list[CacheDriftRead]:
        """Rewrite drifted cache fields from the ledger, which is the source of truth."""

        def work() -> list[CacheDriftRead]:
            drift = self.verify_cache(session)
            for item in drift:
                user = self._lock_user(session, item.user_id)
                if user is not None:
                    self._write_cache(user, item.ledger_team_leader_id)
            session.flush()
            return drift

        drift = run_in_transaction(session, "team.repair_cache", work)
        observe_assignment_cache_repairs(len(drift))
        for item in drift:
            audit.record(
                actor_user_id=repaired_by,
                entity_type="user",
                entity_id=str(item.user_id),
                action="team.cache_repaired",
                before={"is_assigned": item.cached_is_assigned, "assigned_to": item.cached_assigned_to},
                after={"is_assigned": item.ledger_team_leader_id is not None, "assigned_to": item.ledger_team_leader_id},
            )
        if drift:
            logger.warning("team.cache_repaired", extra={"actor_id": repaired_by, "reason": f"{len(drift)} users drifted"})
        return drift

    def _run(
        self,
        session: Session,
        operation: str,
        work: Callable[[], TeamAssignment],
        *,
        agent_id: int,
    ) -> TeamAssignment:
        try:
            row = run_in_transaction(session, f"team.{operation}", work)
        except IntegrityError as exc:
            observe_assignment_operation(operation, "conflict")
            observe_assignment_conflict("active_assignment_exists")
            logger.info("team.conflict", extra={"action": operation, "agent_id": agent_id, "error": str(exc.orig)})
            raise ConflictError(
                "Agent is already assigned to a team leader",
                details={"agent_id": agent_id},
            ) from exc
        except DomainError as exc:
            observe_assignment_operation(operation, exc.code)
            if isinstance(exc, ConflictError):
                observe_assignment_conflict(operation)
            raise
        observe_assignment_operation(operation, "success")
        return row

    @staticmethod
    def _lock_user(session: Session, user_id: int) -> User | None:
        return session.scalar(select(User).where(User.id == user_id).with_for_update())

    @staticmethod
    def _require_role(user: User | None, role: Role, message: str) -> None:
        if user is None or user.role != role.value or not user.is_active:
            raise ValidationError(message, details={"expected_role": role.value})

    @staticmethod
    def _deactivate(session: Session, assignment_id: int) -> bool:
        result = session.execute(
            update(TeamAssignment)
            .where(TeamAssignment.id == assignment_id, TeamAssignment.is_active.is_(True))
            .values(is_active=False, deactivated_at=utcnow())
        )
        return result.rowcount == 1

    @staticmethod
    def _write_cache(user: User, team_leader_id: int | None) -> None:
        user.is_assigned = team_leader_id is not None
        user.assigned_to = team_leader_id

    @staticmethod
    def _ledger_snapshot(session: Session) -> dict[int, int]:
        rows = session.execute(
            select(TeamAssignment.agent_id, TeamAssignment.team_leader_id).where(TeamAssignment.is_active.is_(True))
        ).all()
        return {agent_id: team_leader_id for agent_id, team_leader_id in rows}


assignment_ledger = AssignmentLedger()
