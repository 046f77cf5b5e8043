from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from opentelemetry import trace
from sqlalchemy import Select, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from realty_crm import audit
from realty_crm.core.database import run_in_transaction
from realty_crm.listings.models import Lead, Property
from realty_crm.metrics import observe_viewing_duplicate_root, observe_viewing_operation
from realty_crm.otel import annotate
from realty_crm.platform.security import gate
from realty_crm.platform.security import scope as scope_resolver
from realty_crm.platform.security.context import Principal
from realty_crm.platform.security.errors import (
    ConflictError,
    DomainError,
    DuplicateError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from realty_crm.platform.security.repository import BaseRepository
from realty_crm.platform.security.roles import ASSIGNABLE_OWNER_ROLES, ResourceAction, ResourceType, Role
from realty_crm.teams.service import assignment_ledger
from realty_crm.users.models import User, utcnow
from realty_crm.viewings.models import Viewing, ViewingStatus
from realty_crm.viewings.schemas import (
    FollowUpCreate,
    MutationAuthorizationRead,
    ViewingCreate,
    ViewingFilters,
    ViewingRead,
    ViewingStatsRead,
    ViewingUpdate,
)


logger = logging.getLogger("realty_crm.viewings")
tracer = trace.get_tracer("realty_crm.viewings")

DUPLICATE_ROOT_MESSAGE = (
    "A viewing already exists for this lead and property. Add an update to the existing viewing instead."
)
_NON_NULLABLE_FIELDS = ("property_id", "lead_id", "agent_id", "viewing_date", "viewing_time", "status", "is_serious")
_ACTIONS = {
    "read": ResourceAction.READ,
    "update": ResourceAction.UPDATE,
    "delete": ResourceAction.DELETE,
}


class ViewingRepository(BaseRepository):
    resource_type = ResourceType.VIEWING
    model = Viewing


def _snapshot(viewing: Viewing) -> dict[str, Any]:
    return {
        "property_id": viewing.property_id,
        "lead_id": viewing.lead_id,
        "agent_id": viewing.agent_id,
        "viewing_date": viewing.viewing_date.isoformat(),
        "viewing_time": viewing.viewing_time.isoformat(),
        "status": viewing.status,
        "is_serious": viewing.is_serious,
        "parent_viewing_id": viewing.parent_viewing_id,
    }


@dataclass(slots=True)
class ViewingHierarchy:
    """Root viewings and their follow-ups.

    A root is unique per (lead, property); the partial unique index on
    ``viewings`` decides races that slip past the pre-check. Follow-ups hang
    off roots only, so the tree is exactly two levels deep.
    """

    repository: ViewingRepository = ViewingRepository()

    def create_root(self, session: Session, principal: Principal, payload: ViewingCreate) -> ViewingRead:
        gate.require(session, principal, ResourceType.VIEWING, ResourceAction.CREATE)

        with tracer.start_as_current_span("viewing.create_root") as span:
            annotate(span, lead_id=payload.lead_id, property_id=payload.property_id, agent_id=payload.agent_id)

            def work() -> Viewing:
                prop = session.get(Property, payload.property_id)
                if prop is None:
                    raise NotFoundError("Property not found", details={"id": payload.property_id})
                if session.get(Lead, payload.lead_id) is None:
                    raise NotFoundError("Lead not found", details={"id": payload.lead_id})

                agent_id = self._resolve_root_agent(session, principal, prop, payload.agent_id)

                existing_id = self._find_root(session, payload.lead_id, payload.property_id)
                if existing_id is not None:
                    raise DuplicateError(
                        DUPLICATE_ROOT_MESSAGE,
                        details={"existing_viewing_id": existing_id, "lead_id": payload.lead_id, "property_id": payload.property_id},
                    )

                viewing = Viewing(
                    property_id=payload.property_id,
                    lead_id=payload.lead_id,
                    agent_id=agent_id,
                    viewing_date=payload.viewing_date,
                    viewing_time=payload.viewing_time,
                    status=payload.status,
                    is_serious=payload.is_serious,
                    description=payload.description,
                    notes=payload.notes,
                    parent_viewing_id=None,
                )
                session.add(viewing)
                session.flush()

                if payload.initial_update:
                    now = utcnow()
                    session.add(
                        Viewing(
                            property_id=viewing.property_id,
                            lead_id=viewing.lead_id,
                            agent_id=viewing.agent_id,
                            viewing_date=now.date(),
                            viewing_time=now.time().replace(microsecond=0),
                            status=ViewingStatus.SCHEDULED.value,
                            is_serious=False,
                            description=payload.initial_update,
                            parent_viewing_id=viewing.id,
                        )
                    )
                    session.flush()
                return viewing

            viewing = self._run(
                session,
                "create_root",
                work,
                duplicate_details={"lead_id": payload.lead_id, "property_id": payload.property_id},
            )

        self._record(principal, viewing, "viewing.created", before=None)
        return self._to_read(session, viewing)

    def create_follow_up(
        self,
        session: Session,
        principal: Principal,
        parent_id: int,
        payload: FollowUpCreate,
    ) -> ViewingRead:
        gate.require(session, principal, ResourceType.VIEWING, ResourceAction.UPDATE, target_id=parent_id)
        parent = self._get_root(session, parent_id, message="Parent viewing not found")

        with tracer.start_as_current_span("viewing.create_follow_up") as span:
            span.set_attribute("parent_viewing_id", parent.id)

            def work() -> Viewing:
                agent_id = parent.agent_id
                if payload.agent_id is not None and payload.agent_id != parent.agent_id:
                    self._check_reassignment(session, principal, payload.agent_id)
                    agent_id = payload.agent_id
                property_id = payload.property_id or parent.property_id
                lead_id = payload.lead_id or parent.lead_id
                self._require_listing_refs(session, property_id=property_id, lead_id=lead_id)

                now = utcnow()
                follow_up = Viewing(
                    property_id=property_id,
                    lead_id=lead_id,
                    agent_id=agent_id,
                    viewing_date=payload.viewing_date or now.date(),
                    viewing_time=payload.viewing_time or now.time().replace(microsecond=0),
                    status=payload.status,
                    is_serious=payload.is_serious,
                    description=payload.description,
                    notes=payload.notes,
                    parent_viewing_id=parent.id,
                )
                session.add(follow_up)
                session.flush()
                return follow_up

            follow_up = self._run(session, "create_follow_up", work)

        self._record(principal, follow_up, "viewing.follow_up_created", before=None)
        return self._to_read(session, follow_up)

    def get_by_id(self, session: Session, principal: Principal, viewing_id: int) -> ViewingRead:
        gate.require(session, principal, ResourceType.VIEWING, ResourceAction.READ, target_id=viewing_id)
        viewing = session.get(Viewing, viewing_id)
        if viewing is None:
            raise NotFoundError("Viewing not found", details={"id": viewing_id})
        return self._to_read(session, viewing)

    def list_roots(
        self,
        session: Session,
        principal: Principal,
        filters: ViewingFilters | None = None,
    ) -> list[ViewingRead]:
        gate.require(session, principal, ResourceType.VIEWING, ResourceAction.LIST)
        scope = self.repository.resolve_scope(session, principal)
        stmt = self._filtered(select(Viewing).where(Viewing.parent_viewing_id.is_(None)), filters or ViewingFilters())
        stmt = self.repository.apply_scope_query(stmt, scope).order_by(
            Viewing.is_serious.desc(),
            Viewing.viewing_date.desc(),
            Viewing.viewing_time.desc(),
            Viewing.id.desc(),
        )
        roots = session.scalars(stmt).all()
        children = self._follow_ups_by_parent(session, [item.id for item in roots])
        return [
            ViewingRead.model_validate(item).model_copy(update={"sub_viewings": children.get(item.id, [])})
            for item in roots
        ]

    def list_for_agent(
        self,
        session: Session,
        principal: Principal,
        agent_id: int,
        filters: ViewingFilters | None = None,
    ) -> list[ViewingRead]:
        gate.require(session, principal, ResourceType.VIEWING, ResourceAction.LIST)
        decision = gate.check_owner(principal, self.repository.resolve_scope(session, principal), agent_id)
        if not decision:
            raise gate.forbidden(principal, ResourceType.VIEWING, ResourceAction.LIST, decision.reason, target_id=agent_id)
        narrowed = (filters or ViewingFilters()).model_copy(update={"agent_id": agent_id})
        return self.list_roots(session, principal, narrowed)

    def list_follow_ups(self, session: Session, principal: Principal, parent_id: int) -> list[ViewingRead]:
        gate.require(session, principal, ResourceType.VIEWING, ResourceAction.READ, target_id=parent_id)
        parent = self._get_root(session, parent_id, message="Viewing not found")
        return self._follow_ups_by_parent(session, [parent.id]).get(parent.id, [])

    def update_viewing(
        self,
        session: Session,
        principal: Principal,
        viewing_id: int,
        payload: ViewingUpdate,
    ) -> ViewingRead:
        gate.require(session, principal, ResourceType.VIEWING, ResourceAction.UPDATE, target_id=viewing_id)
        viewing = session.get(Viewing, viewing_id)
        if viewing is None:
            raise NotFoundError("Viewing not found", details={"id": viewing_id})

        changes = payload.model_dump(exclude_unset=True)
        for key in _NON_NULLABLE_FIELDS:
            if key in changes and changes[key] is None:
                raise ValidationError(f"{key} cannot be null", details={"field": key})
        before = _snapshot(viewing)

        with tracer.start_as_current_span("viewing.update") as span:
            span.set_attribute("viewing_id", viewing.id)

            def work() -> Viewing:
                if "agent_id" in changes and changes["agent_id"] != viewing.agent_id:
                    self._check_reassignment(session, principal, changes["agent_id"])
                lead_id = changes.get("lead_id", viewing.lead_id)
                property_id = changes.get("property_id", viewing.property_id)
                if lead_id != viewing.lead_id or property_id != viewing.property_id:
                    self._require_listing_refs(session, property_id=property_id, lead_id=lead_id)
                    if viewing.is_root:
                        existing_id = self._find_root(session, lead_id, property_id)
                        if existing_id is not None and existing_id != viewing.id:
                            raise DuplicateError(
                                DUPLICATE_ROOT_MESSAGE,
                                details={"existing_viewing_id": existing_id, "lead_id": lead_id, "property_id": property_id},
                            )
                for key, value in changes.items():
                    setattr(viewing, key, value)
                session.flush()
                return viewing

            viewing = self._run(session, "update", work, duplicate_details={"viewing_id": viewing_id})

        self._record(principal, viewing, "viewing.updated", before=before)
        return self._to_read(session, viewing)

    def delete_viewing(self, session: Session, principal: Principal, viewing_id: int) -> None:
        gate.require(session, principal, ResourceType.VIEWING, ResourceAction.DELETE, target_id=viewing_id)
        viewing = session.get(Viewing, viewing_id)
        if viewing is None:
            raise NotFoundError("Viewing not found", details={"id": viewing_id})
        before = _snapshot(viewing)

        def work() -> Viewing:
            session.delete(viewing)
            session.flush()
            return viewing

        with tracer.start_as_current_span("viewing.delete") as span:
            span.set_attribute("viewing_id", viewing_id)
            self._run(session, "delete", work)

        audit.record(
            actor_user_id=principal.user_id,
            entity_type="viewing",
            entity_id=str(viewing_id),
            action="viewing.deleted",
            before=before,
            after=None,
            correlation_id=principal.correlation_id,
        )
        logger.info("viewing.deleted", extra={"viewing_id": viewing_id, "actor_id": principal.user_id})

    def update_follow_up(
        self,
        session: Session,
        principal: Principal,
        parent_id: int,
        follow_up_id: int,
        payload: ViewingUpdate,
    ) -> ViewingRead:
        gate.require(session, principal, ResourceType.VIEWING, ResourceAction.UPDATE, target_id=parent_id)
        self._get_linked_follow_up(session, parent_id, follow_up_id)
        return self.update_viewing(session, principal, follow_up_id, payload)

    def delete_follow_up(self, session: Session, principal: Principal, parent_id: int, follow_up_id: int) -> None:
        gate.require(session, principal, ResourceType.VIEWING, ResourceAction.DELETE, target_id=parent_id)
        self._get_linked_follow_up(session, parent_id, follow_up_id)
        self.delete_viewing(session, principal, follow_up_id)

    def stats(self, session: Session, principal: Principal) -> ViewingStatsRead:
        gate.require(session, principal, ResourceType.VIEWING, ResourceAction.LIST)
        scope = self.repository.resolve_scope(session, principal)
        stmt = self.repository.apply_scope_query(
            select(Viewing.status, func.count(Viewing.id)).group_by(Viewing.status),
            scope,
        )
        counts = {status: count for status, count in session.execute(stmt).all()}
        return ViewingStatsRead(
            total_viewings=sum(counts.values()),
            scheduled=counts.get(ViewingStatus.SCHEDULED.value, 0),
            completed=counts.get(ViewingStatus.COMPLETED.value, 0),
            cancelled=counts.get(ViewingStatus.CANCELLED.value, 0),
            no_show=counts.get(ViewingStatus.NO_SHOW.value, 0),
            rescheduled=counts.get(ViewingStatus.RESCHEDULED.value, 0),
        )

    def authorize_mutation(
        self,
        session: Session,
        principal: Principal,
        viewing_id: int,
        action: str,
    ) -> MutationAuthorizationRead:
        resource_action = _ACTIONS.get(action)
        if resource_action is None:
            raise ValidationError(f"Unsupported action '{action}'", details={"allowed": sorted(_ACTIONS)})
        decision = gate.check(session, principal, ResourceType.VIEWING, resource_action, target_id=viewing_id)
        return MutationAuthorizationRead(
            viewing_id=viewing_id,
            action=action,
            allowed=decision.allowed,
            reason=decision.reason,
        )

    def _resolve_root_agent(
        self,
        session: Session,
        principal: Principal,
        prop: Property,
        requested_agent_id: int | None,
    ) -> int:
        """Pick the owning agent of a new root from the property's owner and the caller's role."""

        def forbid(reason: str) -> ForbiddenError:
            return gate.forbidden(principal, ResourceType.VIEWING, ResourceAction.CREATE, reason, target_id=prop.id)

        if principal.role == Role.AGENT:
            if prop.agent_id != principal.user_id:
                raise forbid("You can only create viewings for properties assigned to you")
            if requested_agent_id is not None and requested_agent_id != principal.user_id:
                raise forbid("Agents can only create viewings for themselves")
            return principal.user_id

        if principal.role == Role.TEAM_LEADER:
            if prop.agent_id == principal.user_id:
                if requested_agent_id is not None and requested_agent_id != principal.user_id:
                    raise forbid("Viewings for your own properties must be assigned to you")
                return principal.user_id
            members = assignment_ledger.get_team_members(session, principal.user_id)
            if prop.agent_id is not None and prop.agent_id in members:
                if requested_agent_id is not None and requested_agent_id != prop.agent_id:
                    raise forbid("Viewings for a team member's property must be assigned to that member")
                return prop.agent_id
            raise forbid("Property is not assigned to you or your team")

        if requested_agent_id is None:
            raise ValidationError("agent_id is required", details={"field": "agent_id"})
        self._require_assignable_agent(session, requested_agent_id)
        return requested_agent_id

    def _check_reassignment(self, session: Session, principal: Principal, new_agent_id: int) -> None:
        if principal.role == Role.AGENT:
            raise gate.forbidden(principal, ResourceType.VIEWING, ResourceAction.UPDATE, "Agents cannot reassign viewings")
        if principal.role == Role.TEAM_LEADER:
            scope = scope_resolver.resolve(session, principal, ResourceType.VIEWING)
            if not scope.allows(new_agent_id):
                raise gate.forbidden(
                    principal,
                    ResourceType.VIEWING,
                    ResourceAction.UPDATE,
                    "You can only assign viewings to yourself or your team members",
                )
            return
        self._require_assignable_agent(session, new_agent_id)

    @staticmethod
    def _require_assignable_agent(session: Session, agent_id: int) -> None:
        agent = session.get(User, agent_id)
        if agent is None or not agent.is_active or agent.role not in {role.value for role in ASSIGNABLE_OWNER_ROLES}:
            raise ValidationError("Invalid agent", details={"agent_id": agent_id})

    @staticmethod
    def _require_listing_refs(session: Session, *, property_id: int, lead_id: int) -> None:
        if session.get(Property, property_id) is None:
            raise NotFoundError("Property not found", details={"id": property_id})
        if session.get(Lead, lead_id) is None:
            raise NotFoundError("Lead not found", details={"id": lead_id})

    @staticmethod
    def _find_root(session: Session, lead_id: int, property_id: int) -> int | None:
        return session.scalar(
            select(Viewing.id).where(
                Viewing.lead_id == lead_id,
                Viewing.property_id == property_id,
                Viewing.parent_viewing_id.is_(None),
            )
        )

    @staticmethod
    def _get_root(session: Session, viewing_id: int, *, message: str) -> Viewing:
        viewing = session.get(Viewing, viewing_id)
        if viewing is None:
            raise NotFoundError(message, details={"id": viewing_id})
        if not viewing.is_root:
            raise NotFoundError(message, details={"id": viewing_id, "reason": "viewing is a follow-up"})
        return viewing

    @staticmethod
    def _get_linked_follow_up(session: Session, parent_id: int, follow_up_id: int) -> Viewing:
        follow_up = session.get(Viewing, follow_up_id)
        if follow_up is None or follow_up.parent_viewing_id != parent_id:
            raise NotFoundError(
                "Follow-up not found for this viewing",
                details={"parent_viewing_id": parent_id, "id": follow_up_id},
            )
        return follow_up

    @staticmethod
    def _filtered(stmt: Select[tuple[Viewing]], filters: ViewingFilters) -> Select[tuple[Viewing]]:
        if filters.status is not None:
            stmt = stmt.where(Viewing.status == filters.status)
        if filters.agent_id is not None:
            stmt = stmt.where(Viewing.agent_id == filters.agent_id)
        if filters.property_id is not None:
            stmt = stmt.where(Viewing.property_id == filters.property_id)
        if filters.lead_id is not None:
            stmt = stmt.where(Viewing.lead_id == filters.lead_id)
        if filters.date_from is not None:
            stmt = stmt.where(Viewing.viewing_date >= filters.date_from)
        if filters.date_to is not None:
            stmt = stmt.where(Viewing.viewing_date <= filters.date_to)
        return stmt

    @staticmethod
    def _follow_ups_by_parent(session: Session, parent_ids: list[int]) -> dict[int, list[ViewingRead]]:
        if not parent_ids:
            return {}
        rows = session.scalars(
            select(Viewing)
            .where(Viewing.parent_viewing_id.in_(parent_ids))
            .order_by(Viewing.viewing_date.desc(), Viewing.viewing_time.desc(), Viewing.id.desc())
        ).all()
        grouped: dict[int, list[ViewingRead]] = defaultdict(list)
        for item in rows:
            grouped[item.parent_viewing_id].append(ViewingRead.model_validate(item))
        return grouped

    def _to_read(self, session: Session, viewing: Viewing) -> ViewingRead:
        read = ViewingRead.model_validate(viewing)
        if not viewing.is_root:
            return read
        children = self._follow_ups_by_parent(session, [viewing.id]).get(viewing.id, [])
        return read.model_copy(update={"sub_viewings": children})

    @staticmethod
    def _run(
        session: Session,
        operation: str,
        work: Callable[[], Viewing],
        *,
        duplicate_details: dict[str, Any] | None = None,
    ) -> Viewing:
        try:
            viewing = run_in_transaction(session, f"viewing.{operation}", work)
        except IntegrityError as exc:
            if duplicate_details is None:
                observe_viewing_operation(operation, "conflict")
                logger.warning("viewing.integrity_error", extra={"action": operation, "error": str(exc.orig)})
                raise ConflictError("Viewing could not be saved", details={"operation": operation}) from exc
            observe_viewing_operation(operation, "duplicate")
            observe_viewing_duplicate_root()
            logger.info("viewing.duplicate_root", extra={"action": operation, "error": str(exc.orig)})
            raise DuplicateError(DUPLICATE_ROOT_MESSAGE, details=duplicate_details) from exc
        except DomainError as exc:
            observe_viewing_operation(operation, exc.code)
            if isinstance(exc, DuplicateError):
                observe_viewing_duplicate_root()
            raise
        observe_viewing_operation(operation, "success")
        return viewing

    @staticmethod
    def _record(principal: Principal, viewing: Viewing, action: str, *, before: dict[str, Any] | None) -> None:
        audit.record(
            actor_user_id=principal.user_id,
            entity_type="viewing",
            entity_id=str(viewing.id),
            action=action,
            before=before,
            after=_snapshot(viewing),
            correlation_id=principal.correlation_id,
        )
        logger.info(
            action,
            extra={
                "viewing_id": viewing.id,
                "parent_viewing_id": viewing.parent_viewing_id,
                "agent_id": viewing.agent_id,
                "actor_id": principal.user_id,
            },
        )


viewing_hierarchy = ViewingHierarchy()
