"""Pytest configuration and shared fixtures."""

from datetime import datetime, timezone

import pytest

from procurement.core.approval import ApprovalEngine, ApproverType, get_preset_policies
from procurement.core.financial.rules import default_custom_evaluators
from procurement.core.ports import FixedClock, SequentialIdGenerator
from procurement.core.types import Actor
from procurement.db.session import create_schema, make_engine, make_session_factory


START = datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    """Clock fixed at 2024-01-15 09:00 UTC."""
    return FixedClock(START)


@pytest.fixture
def ids():
    """Sequential id generator (step-000001, apr-000002, ...)."""
    return SequentialIdGenerator()


@pytest.fixture
def requester():
    return Actor(id="u-requester", name="Rita Requester", email="rita@example.com", roles=("employee",))


@pytest.fixture
def manager():
    return Actor(id="u-manager", name="Max Manager", email="max@example.com", roles=("manager",))


@pytest.fixture
def finance_a():
    return Actor(id="u-fin-a", name="Fiona Finance", email="fiona@example.com", roles=("finance_manager",))


@pytest.fixture
def finance_b():
    return Actor(id="u-fin-b", name="Frank Finance", email="frank@example.com", roles=("finance_manager",))


@pytest.fixture
def buyer():
    return Actor(id="u-buyer", name="Bea Buyer", email="bea@example.com", roles=("buyer",))


@pytest.fixture
def procurement_manager():
    return Actor(id="u-proc", name="Paul Procurement", roles=("procurement_manager",))


@pytest.fixture
def compliance_officer():
    return Actor(id="u-comp", name="Cora Compliance", roles=("compliance",))


@pytest.fixture
def directory(requester, manager, finance_a, finance_b, buyer, procurement_manager, compliance_officer):
    """All known actors, in a stable order."""
    return [requester, manager, finance_a, finance_b, buyer, procurement_manager, compliance_officer]


@pytest.fixture
def resolve_approvers(directory, manager):
    """Approver resolver backed by the fixture directory.

    Users not in the directory resolve to bare actors with that id.
    """
    by_id = {actor.id: actor for actor in directory}

    def resolve(config, context):
        values = (config.value,) if isinstance(config.value, str) else tuple(config.value or ())
        if config.type == ApproverType.USER:
            return [by_id.get(user_id) or Actor(id=user_id) for user_id in values]
        if config.type == ApproverType.ROLE:
            return [actor for actor in directory if any(actor.has_role(role) for role in values)]
        if config.type in (ApproverType.MANAGER, ApproverType.DEPARTMENT):
            return [manager]
        return []

    return resolve


@pytest.fixture
def engine(clock, ids):
    """Engine with the preset policies and their custom evaluators."""
    return ApprovalEngine(
        get_preset_policies(),
        custom_evaluators=default_custom_evaluators(),
        clock=clock,
        id_generator=ids,
    )


@pytest.fixture
def db_session():
    """Session on a fresh in-memory SQLite database."""
    db_engine = make_engine("sqlite://")
    create_schema(db_engine)
    session = make_session_factory(db_engine)()
    yield session
    session.close()
    db_engine.dispose()
