"""
Shared fixtures for policyauth tests.
"""

import pytest

from policyauth import (
    Action,
    ActionType,
    Actor,
    Cardinality,
    EntityDefinition,
    EvaluationContext,
    MemoryDataLayer,
    Relationship,
)
from policyauth.resource import default_actions


@pytest.fixture
def user_entity():
    """A minimal user entity used as relationship destination"""
    return EntityDefinition.define("user", ["name", "admin"])


@pytest.fixture
def post_entity(user_entity):
    """A post with an owner, editors and a custom publish action"""
    return EntityDefinition.define(
        "post",
        ["title", "hidden", "owner_id", "score", "name", "length", "secret"],
        actions=list(default_actions()) + [Action("publish", ActionType.UPDATE)],
        relationships=[
            Relationship("owner", user_entity),
            Relationship("editors", user_entity, Cardinality.MANY),
        ],
    )


@pytest.fixture
def actor_a():
    return Actor(id="A")


@pytest.fixture
def actor_c():
    return Actor(id="C")


@pytest.fixture
def admin():
    return Actor(id="root", attributes={"admin": True})


@pytest.fixture
def make_context(post_entity):
    """Build an EvaluationContext for one of the post actions"""
    def _make(action_name="read", actor=None, **kwargs):
        return EvaluationContext(action=post_entity.action(action_name), actor=actor, **kwargs)
    return _make


@pytest.fixture
def store():
    """Memory data layer holding the owner/hidden scenario records"""
    data = MemoryDataLayer()
    data.insert("post", {"id": 1, "title": "first", "owner": {"id": "A"}, "hidden": True, "score": 5})
    data.insert("post", {"id": 2, "title": "second", "owner": {"id": "B"}, "hidden": False, "score": 1})
    return data
