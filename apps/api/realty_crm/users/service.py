from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import Select, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from realty_crm import audit
from realty_crm.core.database import run_in_transaction
from realty_crm.platform.security import gate
from realty_crm.platform.security.context import Principal
from realty_crm.platform.security.errors import ConflictError, NotFoundError, ValidationError
from realty_crm.platform.security.roles import USER_ADMIN_ROLES, ResourceAction, ResourceType, Role
from realty_crm.teams.models import TeamAssignment
from realty_crm.users.models import User
from realty_crm.users.schemas import UserRead, UserUpdate


logger = logging.getLogger("realty_crm.users")

_TEAM_BOUND_ROLES = {Role.AGENT.value, Role.TEAM_LEADER.value}


@dataclass(slots=True)
class UserService:
    def get_user(self, session: Session, principal: Principal, user_id: int) -> UserRead:
        gate.require(session, principal, ResourceType.USER, ResourceAction.READ)
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found", details={"id": user_id})
        return UserRead.model_validate(user)

    def list_users(self, session: Session, principal: Principal, *, role: Role | None = None) -> list[UserRead]:
        gate.require(session, principal, ResourceType.USER, ResourceAction.LIST)
        stmt: Select[tuple[User]] = select(User)
        if role is not None:
            stmt = stmt.where(User.role == role.value)
        rows = session.scalars(stmt.order_by(User.name.asc(), User.id.asc())).all()
        return [UserRead.model_validate(item) for item in rows]

    def update_user(self, session: Session, principal: Principal, user_id: int, payload: UserUpdate) -> UserRead:
        """Profile update. Admin and hr may edit anyone; everyone else only themselves."""

        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found", details={"id": user_id})

        if user_id != principal.user_id and principal.role not in USER_ADMIN_ROLES:
            raise gate.forbidden(
                principal,
                ResourceType.USER,
                ResourceAction.UPDATE,
                "Only admin and hr may update other users",
                target_id=user_id,
            )

        requested = payload.model_dump(exclude_unset=True)
        changes = {key: value for key, value in requested.items() if value is not None and getattr(user, key) != value}
        decision = gate.check_self_change(principal, user_id, changes)
        if not decision:
            raise gate.forbidden(principal, ResourceType.USER, ResourceAction.UPDATE, decision.reason, target_id=user_id)

        if "role" in changes and user.role in _TEAM_BOUND_ROLES and self._has_team_links(session, user.id):
            raise ValidationError(
                "Remove the user's active team assignments before changing their role",
                details={"id": user_id},
            )

        before = {key: getattr(user, key) for key in changes}

        def work() -> User:
            for key, value in changes.items():
                setattr(user, key, value)
            session.flush()
            return user

        try:
            user = run_in_transaction(session, "user.update", work)
        except IntegrityError as exc:
            raise ConflictError("Email already in use", details={"email": changes.get("email")}) from exc

        if changes:
            audit.record(
                actor_user_id=principal.user_id,
                entity_type="user",
                entity_id=str(user_id),
                action="user.updated",
                before=before,
                after=changes,
                correlation_id=principal.correlation_id,
            )
            logger.info("user.updated", extra={"actor_id": principal.user_id, "resource": "user", "action": "update"})
        return UserRead.model_validate(user)

    @staticmethod
    def _has_team_links(session: Session, user_id: int) -> bool:
        link = session.scalar(
            select(TeamAssignment.id)
            .where(
                TeamAssignment.is_active.is_(True),
                (TeamAssignment.agent_id == user_id) | (TeamAssignment.team_leader_id == user_id),
            )
            .limit(1)
        )
        return link is not None


user_service = UserService()
