from __future__ import annotations

import threading
from collections.abc import Generator
from datetime import date, datetime, time, timezone
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from realty_crm import audit
from realty_crm.core.database import Base
from realty_crm.listings.models import Lead, Property
from realty_crm.platform.security.context import Principal
from realty_crm.platform.security.errors import (
    DomainError,
    DuplicateError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from realty_crm.platform.security.roles import Role
from realty_crm.teams.service import assignment_ledger
from realty_crm.users.models import User
from realty_crm.viewings.models import Viewing
from realty_crm.viewings.schemas import FollowUpCreate, ViewingCreate, ViewingFilters, ViewingRead, ViewingUpdate
from realty_crm.viewings.service import DUPLICATE_ROOT_MESSAGE, ViewingHierarchy, viewing_hierarchy


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_audit() -> Generator[None, None, None]:
    audit.audit_entries.clear()
    yield
    audit.audit_entries.clear()


def _seed(session: Session) -> dict[str, int]:
    ids: dict[str, int] = {}
    for name, role in [
        ("admin", "admin"),
        ("ops", "operations"),
        ("hr", "hr"),
        ("tl", "team_leader"),
        ("tl2", "team_leader"),
        ("a1", "agent"),
        ("a2", "agent"),
        ("a3", "agent"),
    ]:
        user = User(name=name, email=f"{name}@realty.test", role=role)
        session.add(user)
        session.flush()
        ids[name] = user.id

    for index in range(1, 5):
        lead = Lead(customer_name=f"Buyer {index}", agent_id=ids["a1"])
        session.add(lead)
        session.flush()
        ids[f"lead{index}"] = lead.id

    for key, owner in [("p_a1", "a1"), ("p_a2", "a2"), ("p_a3", "a3"), ("p_tl", "tl"), ("p_none", None)]:
        prop = Property(reference_number=key.upper(), location="Downtown", agent_id=ids[owner] if owner else None)
        session.add(prop)
        session.flush()
        ids[key] = prop.id
    session.commit()

    assignment_ledger.assign(session, ids["tl"], ids["a1"], ids["admin"])
    assignment_ledger.assign(session, ids["tl"], ids["a2"], ids["admin"])
    assignment_ledger.assign(session, ids["tl2"], ids["a3"], ids["admin"])
    return ids


@pytest.fixture()
def world(db_session: Session) -> dict[str, int]:
    return _seed(db_session)


def _as(world: dict[str, int], key: str, role: Role) -> Principal:
    return Principal(user_id=world[key], role=role)


def _payload(world: dict[str, int], lead: str, prop: str, **overrides: Any) -> ViewingCreate:
    data: dict[str, Any] = {
        "lead_id": world[lead],
        "property_id": world[prop],
        "viewing_date": date(2026, 10, 20),
        "viewing_time": time(11, 0),
    }
    data.update(overrides)
    return ViewingCreate(**data)


def _root_count(session: Session, lead_id: int, property_id: int) -> int:
    return session.scalar(
        select(func.count())
        .select_from(Viewing)
        .where(Viewing.lead_id == lead_id, Viewing.property_id == property_id, Viewing.parent_viewing_id.is_(None))
    )


def test_duplicate_root_rejected_but_follow_up_allowed(db_session: Session, world: dict[str, int]) -> None:
    admin = _as(world, "admin", Role.ADMIN)
    root = viewing_hierarchy.create_root(db_session, admin, _payload(world, "lead1", "p_a1", agent_id=world["a1"]))
    assert root.parent_viewing_id is None
    assert root.sub_viewings == []

    with pytest.raises(DuplicateError) as exc_info:
        viewing_hierarchy.create_root(db_session, admin, _payload(world, "lead1", "p_a1", agent_id=world["a2"]))
    assert exc_info.value.message == DUPLICATE_ROOT_MESSAGE
    assert exc_info.value.details["existing_viewing_id"] == root.id

    follow_up = viewing_hierarchy.create_follow_up(db_session, admin, root.id, FollowUpCreate(description="Second visit"))
    assert follow_up.parent_viewing_id == root.id
    assert (follow_up.lead_id, follow_up.property_id, follow_up.agent_id) == (root.lead_id, root.property_id, root.agent_id)
    assert follow_up.sub_viewings is None

    another = viewing_hierarchy.create_follow_up(db_session, admin, root.id, FollowUpCreate(status="Completed"))
    assert another.status == "Completed"
    assert _root_count(db_session, world["lead1"], world["p_a1"]) == 1


def test_follow_up_overrides_inherited_fields(db_session: Session, world: dict[str, int]) -> None:
    admin = _as(world, "admin", Role.ADMIN)
    root = viewing_hierarchy.create_root(db_session, admin, _payload(world, "lead1", "p_a1", agent_id=world["a1"]))

    follow_up = viewing_hierarchy.create_follow_up(
        db_session,
        admin,
        root.id,
        FollowUpCreate(
            property_id=world["p_a2"],
            agent_id=world["a2"],
            viewing_date=date(2026, 11, 2),
            viewing_time=time(16, 30),
        ),
    )
    assert follow_up.property_id == world["p_a2"]
    assert follow_up.agent_id == world["a2"]
    assert follow_up.lead_id == root.lead_id
    assert follow_up.viewing_date == date(2026, 11, 2)


def test_follow_up_of_follow_up_is_not_found(db_session: Session, world: dict[str, int]) -> None:
    admin = _as(world, "admin", Role.ADMIN)
    root = viewing_hierarchy.create_root(db_session, admin, _payload(world, "lead1", "p_a1", agent_id=world["a1"]))
    child = viewing_hierarchy.create_follow_up(db_session, admin, root.id, FollowUpCreate())

    with pytest.raises(NotFoundError, match="Parent viewing not found"):
        viewing_hierarchy.create_follow_up(db_session, admin, child.id, FollowUpCreate())
    with pytest.raises(NotFoundError, match="Viewing not found"):
        viewing_hierarchy.create_follow_up(db_session, admin, 987654, FollowUpCreate())


def test_out_of_scope_follow_up_targets_are_forbidden(db_session: Session, world: dict[str, int]) -> None:
    admin = _as(world, "admin", Role.ADMIN)
    outsider = _as(world, "a3", Role.AGENT)
    root = viewing_hierarchy.create_root(db_session, admin, _payload(world, "lead1", "p_a1", agent_id=world["a1"]))
    child = viewing_hierarchy.create_follow_up(db_session, admin, root.id, FollowUpCreate())

    with pytest.raises(ForbiddenError):
        viewing_hierarchy.create_follow_up(db_session, outsider, child.id, FollowUpCreate())
    with pytest.raises(ForbiddenError):
        viewing_hierarchy.list_follow_ups(db_session, outsider, child.id)
    with pytest.raises(ForbiddenError):
        viewing_hierarchy.update_follow_up(db_session, outsider, root.id, 987654, ViewingUpdate(notes="x"))


def test_follow_up_defaults_to_current_utc_date_and_time(
    db_session: Session,
    world: dict[str, int],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    admin = _as(world, "admin", Role.ADMIN)
    root = viewing_hierarchy.create_root(db_session, admin, _payload(world, "lead1", "p_a1", agent_id=world["a1"]))
    monkeypatch.setattr(
        "realty_crm.viewings.service.utcnow",
        lambda: datetime(2026, 12, 31, 23, 30, 15, 999, tzinfo=timezone.utc),
    )

    follow_up = viewing_hierarchy.create_follow_up(db_session, admin, root.id, FollowUpCreate())

    assert follow_up.viewing_date == date(2026, 12, 31)
    assert follow_up.viewing_time == time(23, 30, 15)


def test_get_by_id_populates_sub_viewings_for_roots_only(db_session: Session, world: dict[str, int]) -> None:
    admin = _as(world, "admin", Role.ADMIN)
    root = viewing_hierarchy.create_root(db_session, admin, _payload(world, "lead1", "p_a1", agent_id=world["a1"]))
    early = viewing_hierarchy.create_follow_up(
        db_session, admin, root.id, FollowUpCreate(viewing_date=date(2026, 10, 21), viewing_time=time(9, 0))
    )
    late = viewing_hierarchy.create_follow_up(
        db_session, admin, root.id, FollowUpCreate(viewing_date=date(2026, 10, 25), viewing_time=time(9, 0))
    )

    loaded = viewing_hierarchy.get_by_id(db_session, admin, root.id)
    assert [item.id for item in loaded.sub_viewings or []] == [late.id, early.id]

    child = viewing_hierarchy.get_by_id(db_session, admin, early.id)
    assert child.sub_viewings is None

    assert [item.id for item in viewing_hierarchy.list_follow_ups(db_session, admin, root.id)] == [late.id, early.id]


def test_initial_update_creates_first_follow_up(db_session: Session, world: dict[str, int]) -> None:
    admin = _as(world, "admin", Role.ADMIN)
    root = viewing_hierarchy.create_root(
        db_session,
        admin,
        _payload(world, "lead2", "p_a2", agent_id=world["a2"], initial_update="Client asked for a second look"),
    )
    assert root.sub_viewings is not None
    assert len(root.sub_viewings) == 1
    assert root.sub_viewings[0].description == "Client asked for a second look"
    assert root.sub_viewings[0].agent_id == world["a2"]


def test_agent_reads_and_updates_own_viewing_but_not_others(db_session: Session, world: dict[str, int]) -> None:
    admin = _as(world, "admin", Role.ADMIN)
    own = viewing_hierarchy.create_root(db_session, admin, _payload(world, "lead1", "p_a2", agent_id=world["a2"]))
    foreign = viewing_hierarchy.create_root(db_session, admin, _payload(world, "lead2", "p_a3", agent_id=world["a3"]))

    agent = _as(world, "a2", Role.AGENT)
    assert viewing_hierarchy.get_by_id(db_session, agent, own.id).id == own.id
    updated = viewing_hierarchy.update_viewing(db_session, agent, own.id, ViewingUpdate(status="Completed", notes="Liked it"))
    assert updated.status == "Completed"
    assert updated.notes == "Liked it"

    with pytest.raises(ForbiddenError):
        viewing_hierarchy.update_viewing(db_session, agent, foreign.id, ViewingUpdate(status="Cancelled"))
    with pytest.raises(ForbiddenError):
        viewing_hierarchy.get_by_id(db_session, agent, foreign.id)

    unchanged = db_session.get(Viewing, foreign.id)
    assert unchanged is not None
    assert unchanged.status == "Scheduled"


def test_roots_order_serious_first_then_most_recent(db_session: Session, world: dict[str, int]) -> None:
    admin = _as(world, "admin", Role.ADMIN)

    def create(lead: str, prop: str, serious: bool, on: date, at: time) -> int:
        payload = _payload(world, lead, prop, agent_id=world["a1"], is_serious=serious, viewing_date=on, viewing_time=at)
        return viewing_hierarchy.create_root(db_session, admin, payload).id

    casual_old = create("lead1", "p_a1", False, date(2026, 10, 10), time(10, 0))
    serious_morning = create("lead2", "p_a1", True, date(2026, 9, 1), time(9, 0))
    casual_new = create("lead3", "p_a1", False, date(2026, 10, 12), time(8, 0))
    serious_afternoon = create("lead1", "p_a2", True, date(2026, 9, 1), time(15, 0))

    ordered = [item.id for item in viewing_hierarchy.list_roots(db_session, admin)]
    assert ordered == [serious_afternoon, serious_morning, casual_new, casual_old]

    flags = [item.is_serious for item in viewing_hierarchy.list_roots(db_session, admin)]
    assert flags == sorted(flags, reverse=True)


def test_list_roots_attaches_sub_viewings_and_hides_follow_ups(db_session: Session, world: dict[str, int]) -> None:
    admin = _as(world, "admin", Role.ADMIN)
    root = viewing_hierarchy.create_root(db_session, admin, _payload(world, "lead1", "p_a1", agent_id=world["a1"]))
    child = viewing_hierarchy.create_follow_up(db_session, admin, root.id, FollowUpCreate())

    rows = viewing_hierarchy.list_roots(db_session, admin)
    assert [item.id for item in rows] == [root.id]
    assert [item.id for item in rows[0].sub_viewings or []] == [child.id]


def test_list_roots_filters_are_anded_with_scope(db_session: Session, world: dict[str, int]) -> None:
    admin = _as(world, "admin", Role.ADMIN)
    viewing_hierarchy.create_root(db_session, admin, _payload(world, "lead1", "p_a1", agent_id=world["a1"]))
    foreign = viewing_hierarchy.create_root(db_session, admin, _payload(world, "lead2", "p_a3", agent_id=world["a3"]))

    tl = _as(world, "tl", Role.TEAM_LEADER)
    assert viewing_hierarchy.list_roots(db_session, tl, ViewingFilters(property_id=world["p_a3"])) == []
    assert viewing_hierarchy.list_roots(db_session, tl, ViewingFilters(agent_id=world["a3"])) == []

    filtered = viewing_hierarchy.list_roots(db_session, admin, ViewingFilters(agent_id=world["a3"]))
    assert [item.id for item in filtered] == [foreign.id]


def test_stale_precheck_falls_back_to_unique_index(
    db_session: Session,
    world: dict[str, int],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    admin = _as(world, "admin", Role.ADMIN)
    viewing_hierarchy.create_root(db_session, admin, _payload(world, "lead1", "p_a1", agent_id=world["a1"]))

    # A pre-check that never sees the existing root, as a racing transaction would.
    monkeypatch.setattr(ViewingHierarchy, "_find_root", staticmethod(lambda session, lead_id, property_id: None))

    with pytest.raises(DuplicateError, match="A viewing already exists"):
        viewing_hierarchy.create_root(
            db_session,
            admin,
            _payload(world, "lead1", "p_a1", agent_id=world["a2"], initial_update="should not persist"),
        )

    assert _root_count(db_session, world["lead1"], world["p_a1"]) == 1
    assert db_session.scalar(select(func.count()).select_from(Viewing)) == 1


def test_agent_create_rules(db_session: Session, world: dict[str, int]) -> None:
    agent = _as(world, "a1", Role.AGENT)

    created = viewing_hierarchy.create_root(db_session, agent, _payload(world, "lead1", "p_a1"))
    assert created.agent_id == world["a1"]

    with pytest.raises(ForbiddenError, match="properties assigned to you"):
        viewing_hierarchy.create_root(db_session, agent, _payload(world, "lead1", "p_a2"))
    with pytest.raises(ForbiddenError, match="only create viewings for themselves"):
        viewing_hierarchy.create_root(db_session, agent, _payload(world, "lead2", "p_a1", agent_id=world["a2"]))


def test_team_leader_create_rules(db_session: Session, world: dict[str, int]) -> None:
    tl = _as(world, "tl", Role.TEAM_LEADER)

    own = viewing_hierarchy.create_root(db_session, tl, _payload(world, "lead1", "p_tl"))
    assert own.agent_id == world["tl"]

    for_member = viewing_hierarchy.create_root(db_session, tl, _payload(world, "lead1", "p_a2"))
    assert for_member.agent_id == world["a2"]

    with pytest.raises(ForbiddenError, match="must be assigned to that member"):
        viewing_hierarchy.create_root(db_session, tl, _payload(world, "lead2", "p_a2", agent_id=world["a1"]))
    with pytest.raises(ForbiddenError, match="not assigned to you or your team"):
        viewing_hierarchy.create_root(db_session, tl, _payload(world, "lead1", "p_a3"))
    with pytest.raises(ForbiddenError, match="not assigned to you or your team"):
        viewing_hierarchy.create_root(db_session, tl, _payload(world, "lead1", "p_none"))


def test_management_create_requires_assignable_agent(db_session: Session, world: dict[str, int]) -> None:
    hr = _as(world, "hr", Role.HR)
    with pytest.raises(ValidationError, match="agent_id is required"):
        viewing_hierarchy.create_root(db_session, hr, _payload(world, "lead1", "p_none"))
    with pytest.raises(ValidationError, match="Invalid agent"):
        viewing_hierarchy.create_root(db_session, hr, _payload(world, "lead1", "p_none", agent_id=world["ops"]))

    created = viewing_hierarchy.create_root(db_session, hr, _payload(world, "lead1", "p_none", agent_id=world["tl2"]))
    assert created.agent_id == world["tl2"]


def test_create_root_with_unknown_listing_is_not_found(db_session: Session, world: dict[str, int]) -> None:
    admin = _as(world, "admin", Role.ADMIN)
    payload = _payload(world, "lead1", "p_a1", agent_id=world["a1"]).model_copy(update={"property_id": 55555})
    with pytest.raises(NotFoundError, match="Property not found"):
        viewing_hierarchy.create_root(db_session, admin, payload)


def test_update_rejects_nulls_and_illegal_reassignment(db_session: Session, world: dict[str, int]) -> None:
    admin = _as(world, "admin", Role.ADMIN)
    root = viewing_hierarchy.create_root(db_session, admin, _payload(world, "lead1", "p_a1", agent_id=world["a1"]))

    with pytest.raises(ValidationError, match="status cannot be null"):
        viewing_hierarchy.update_viewing(db_session, admin, root.id, ViewingUpdate(status=None))

    agent = _as(world, "a1", Role.AGENT)
    with pytest.raises(ForbiddenError, match="Agents cannot reassign viewings"):
        viewing_hierarchy.update_viewing(db_session, agent, root.id, ViewingUpdate(agent_id=world["a2"]))

    tl = _as(world, "tl", Role.TEAM_LEADER)
    with pytest.raises(ForbiddenError, match="yourself or your team members"):
        viewing_hierarchy.update_viewing(db_session, tl, root.id, ViewingUpdate(agent_id=world["a3"]))

    moved = viewing_hierarchy.update_viewing(db_session, tl, root.id, ViewingUpdate(agent_id=world["a2"]))
    assert moved.agent_id == world["a2"]

    with pytest.raises(ValidationError, match="Invalid agent"):
        viewing_hierarchy.update_viewing(db_session, admin, root.id, ViewingUpdate(agent_id=world["hr"]))


def test_update_cannot_move_root_onto_existing_pair(db_session: Session, world: dict[str, int]) -> None:
    admin = _as(world, "admin", Role.ADMIN)
    first = viewing_hierarchy.create_root(db_session, admin, _payload(world, "lead1", "p_a1", agent_id=world["a1"]))
    second = viewing_hierarchy.create_root(db_session, admin, _payload(world, "lead2", "p_a1", agent_id=world["a1"]))

    with pytest.raises(DuplicateError) as exc_info:
        viewing_hierarchy.update_viewing(db_session, admin, second.id, ViewingUpdate(lead_id=world["lead1"]))
    assert exc_info.value.details["existing_viewing_id"] == first.id

    child = viewing_hierarchy.create_follow_up(db_session, admin, second.id, FollowUpCreate())
    relinked = viewing_hierarchy.update_viewing(db_session, admin, child.id, ViewingUpdate(lead_id=world["lead1"]))
    assert relinked.lead_id == world["lead1"]


def test_delete_requires_delete_role_and_cascades(db_session: Session, world: dict[str, int]) -> None:
    admin = _as(world, "admin", Role.ADMIN)
    root = viewing_hierarchy.create_root(db_session, admin, _payload(world, "lead1", "p_a1", agent_id=world["a1"]))
    viewing_hierarchy.create_follow_up(db_session, admin, root.id, FollowUpCreate())
    viewing_hierarchy.create_follow_up(db_session, admin, root.id, FollowUpCreate())

    for principal in (_as(world, "a1", Role.AGENT), _as(world, "tl", Role.TEAM_LEADER), _as(world, "hr", Role.HR)):
        with pytest.raises(ForbiddenError):
            viewing_hierarchy.delete_viewing(db_session, principal, root.id)

    viewing_hierarchy.delete_viewing(db_session, _as(world, "ops", Role.OPERATIONS), root.id)
    assert db_session.scalar(select(func.count()).select_from(Viewing)) == 0
    assert [entry["action"] for entry in audit.entries_for("viewing", str(root.id))][-1] == "viewing.deleted"

    with pytest.raises(NotFoundError):
        viewing_hierarchy.get_by_id(db_session, admin, root.id)


def test_follow_up_routes_check_parent_link(db_session: Session, world: dict[str, int]) -> None:
    admin = _as(world, "admin", Role.ADMIN)
    first = viewing_hierarchy.create_root(db_session, admin, _payload(world, "lead1", "p_a1", agent_id=world["a1"]))
    second = viewing_hierarchy.create_root(db_session, admin, _payload(world, "lead2", "p_a1", agent_id=world["a1"]))
    child = viewing_hierarchy.create_follow_up(db_session, admin, first.id, FollowUpCreate())

    with pytest.raises(NotFoundError, match="Follow-up not found for this viewing"):
        viewing_hierarchy.update_follow_up(db_session, admin, second.id, child.id, ViewingUpdate(notes="x"))

    updated = viewing_hierarchy.update_follow_up(db_session, admin, first.id, child.id, ViewingUpdate(notes="Offer made"))
    assert updated.notes == "Offer made"

    viewing_hierarchy.delete_follow_up(db_session, admin, first.id, child.id)
    assert viewing_hierarchy.list_follow_ups(db_session, admin, first.id) == []
    assert db_session.get(Viewing, first.id) is not None


def test_stats_are_scoped(db_session: Session, world: dict[str, int]) -> None:
    admin = _as(world, "admin", Role.ADMIN)
    mine = viewing_hierarchy.create_root(db_session, admin, _payload(world, "lead1", "p_a1", agent_id=world["a1"]))
    viewing_hierarchy.create_follow_up(db_session, admin, mine.id, FollowUpCreate(status="Completed"))
    viewing_hierarchy.create_root(
        db_session, admin, _payload(world, "lead2", "p_a3", agent_id=world["a3"], status="No Show")
    )

    agent_stats = viewing_hierarchy.stats(db_session, _as(world, "a1", Role.AGENT))
    assert agent_stats.total_viewings == 2
    assert agent_stats.scheduled == 1
    assert agent_stats.completed == 1
    assert agent_stats.no_show == 0

    overall = viewing_hierarchy.stats(db_session, admin)
    assert overall.total_viewings == 3
    assert overall.no_show == 1


def test_list_for_agent_respects_scope(db_session: Session, world: dict[str, int]) -> None:
    admin = _as(world, "admin", Role.ADMIN)
    member = viewing_hierarchy.create_root(db_session, admin, _payload(world, "lead1", "p_a2", agent_id=world["a2"]))
    viewing_hierarchy.create_root(db_session, admin, _payload(world, "lead1", "p_a3", agent_id=world["a3"]))

    tl = _as(world, "tl", Role.TEAM_LEADER)
    assert [item.id for item in viewing_hierarchy.list_for_agent(db_session, tl, world["a2"])] == [member.id]
    with pytest.raises(ForbiddenError):
        viewing_hierarchy.list_for_agent(db_session, tl, world["a3"])

    agent = _as(world, "a2", Role.AGENT)
    assert len(viewing_hierarchy.list_for_agent(db_session, agent, world["a2"])) == 1
    with pytest.raises(ForbiddenError):
        viewing_hierarchy.list_for_agent(db_session, agent, world["a1"])


def test_authorize_mutation_reports_decision(db_session: Session, world: dict[str, int]) -> None:
    admin = _as(world, "admin", Role.ADMIN)
    viewing = viewing_hierarchy.create_root(db_session, admin, _payload(world, "lead1", "p_a1", agent_id=world["a1"]))

    owner = _as(world, "a1", Role.AGENT)
    assert viewing_hierarchy.authorize_mutation(db_session, owner, viewing.id, "update").allowed is True

    delete = viewing_hierarchy.authorize_mutation(db_session, owner, viewing.id, "delete")
    assert delete.allowed is False
    assert delete.reason == "role 'agent' may not delete viewing"

    stranger = viewing_hierarchy.authorize_mutation(db_session, _as(world, "a3", Role.AGENT), viewing.id, "update")
    assert stranger.allowed is False

    leader = viewing_hierarchy.authorize_mutation(db_session, _as(world, "tl", Role.TEAM_LEADER), viewing.id, "update")
    assert leader.allowed is True

    assert viewing_hierarchy.authorize_mutation(db_session, _as(world, "ops", Role.OPERATIONS), viewing.id, "delete").allowed

    with pytest.raises(ValidationError):
        viewing_hierarchy.authorize_mutation(db_session, admin, viewing.id, "archive")


def test_concurrent_create_root_has_exactly_one_winner(tmp_path: Path) -> None:
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'viewings.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    with factory() as setup:
        world = _seed(setup)
    admin = _as(world, "admin", Role.ADMIN)

    attempts = 4
    barrier = threading.Barrier(attempts)
    outcomes: list[object] = [None] * attempts

    def runner(index: int) -> None:
        barrier.wait()
        with factory() as session:
            try:
                outcomes[index] = viewing_hierarchy.create_root(
                    session, admin, _payload(world, "lead1", "p_a1", agent_id=world["a1"])
                )
            except DomainError as exc:
                outcomes[index] = exc

    threads = [threading.Thread(target=runner, args=(index,)) for index in range(attempts)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    try:
        assert len([item for item in outcomes if isinstance(item, ViewingRead)]) == 1
        assert len([item for item in outcomes if isinstance(item, DuplicateError)]) == attempts - 1
        with factory() as check:
            assert _root_count(check, world["lead1"], world["p_a1"]) == 1
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
