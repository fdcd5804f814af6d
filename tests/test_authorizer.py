"""
Tests for the decision combinator and the Authorizer.
"""

import pytest

from policyauth import (
    ActionType,
    Authorized,
    Authorizer,
    EngineConfig,
    FilteredBy,
    Forbidden,
    ForbiddenError,
    PolicySetBuilder,
    RequiresStrictCheck,
    authorize_if,
    ensure_authorized,
    forbid_if,
    forbid_unless,
)
from policyauth.audit import MemoryAuditLogger
from policyauth.authz import combine
from policyauth.authz.authz import NO_APPLICABLE_POLICY
from policyauth.expr import (
    And,
    Not,
    Or,
    action,
    action_type,
    actor_attribute_equals,
    actor_present,
    always,
    calculation,
    changing,
    evaluate_record,
    ref,
    relates_to_actor_via,
)
from policyauth.metrics import DecisionMetrics
from policyauth.store import ExpressionCompiler


HIDDEN = ref("hidden").eq(True)


def owned_by(actor_id):
    return ref("owner", "id").eq(actor_id)


class TestDenyByDefault:
    """Test that requests no policy covers are forbidden"""

    def test_empty_policy_set(self, post_entity, make_context, actor_a):
        authorizer = Authorizer(PolicySetBuilder(post_entity).compile())
        decision = authorizer.authorize(make_context(actor=actor_a))
        assert decision == Forbidden(reasons=(NO_APPLICABLE_POLICY,))

    def test_no_applicable_policy(self, post_entity, make_context, actor_a):
        policies = (
            PolicySetBuilder(post_entity)
            .policy(action_type(ActionType.CREATE), authorize_if(always()))
            .compile()
        )
        decision = Authorizer(policies).authorize(make_context(actor=actor_a))
        assert decision.is_forbidden
        assert decision.reasons == (NO_APPLICABLE_POLICY,)

    def test_failed_bypass_alone_is_forbidden(self, post_entity, make_context, actor_a):
        policies = (
            PolicySetBuilder(post_entity)
            .bypass(always(), authorize_if(actor_attribute_equals("admin", True)))
            .compile()
        )
        decision = Authorizer(policies).authorize(make_context(actor=actor_a))
        assert decision.is_forbidden


class TestBypass:
    """Test bypass policies"""

    @pytest.fixture
    def policies(self, post_entity):
        return (
            PolicySetBuilder(post_entity)
            .bypass(always(), authorize_if(actor_attribute_equals("admin", True)), description="admins")
            .policy(always(), forbid_if(always()), description="nobody")
            .compile()
        )

    def test_bypass_overrides_forbidden_policy(self, policies, make_context, admin):
        decision = Authorizer(policies).authorize(make_context(actor=admin))
        assert decision == Authorized(bypassed=True, policies_evaluated=("admins",))

    def test_without_bypass_policy_forbids(self, policies, make_context, actor_a):
        decision = Authorizer(policies).authorize(make_context(actor=actor_a))
        assert decision == Forbidden(reasons=("nobody",), policies_evaluated=("admins", "nobody"))

    def test_bypass_declared_after_policy_still_wins(self, post_entity, make_context, admin):
        policies = (
            PolicySetBuilder(post_entity)
            .policy(always(), forbid_if(always()))
            .bypass(always(), authorize_if(actor_attribute_equals("admin", True)))
            .compile()
        )
        decision = Authorizer(policies).authorize(make_context(actor=admin))
        assert decision.is_authorized
        assert decision.bypassed

    def test_data_dependent_bypass_is_ored(self, post_entity, make_context, actor_a):
        policies = (
            PolicySetBuilder(post_entity)
            .bypass(always(), authorize_if(relates_to_actor_via("owner")))
            .policy(always(), forbid_if(always()))
            .compile()
        )
        decision = Authorizer(policies).authorize(make_context(actor=actor_a))
        assert isinstance(decision, FilteredBy)
        assert decision.filter == owned_by("A")

    def test_bypass_filter_or_normal_filter(self, post_entity, make_context, actor_a):
        policies = (
            PolicySetBuilder(post_entity)
            .bypass(always(), authorize_if(relates_to_actor_via("owner")))
            .policy(always(), forbid_if(HIDDEN), authorize_if(always()))
            .compile()
        )
        decision = Authorizer(policies).authorize(make_context(actor=actor_a))
        assert decision.filter == Or((owned_by("A"), Not(HIDDEN)))

    def test_bypass_without_actor(self, post_entity, make_context):
        policies = (
            PolicySetBuilder(post_entity)
            .bypass(actor_attribute_equals("admin", True), authorize_if(always()))
            .policy(always(), authorize_if(actor_present()))
            .compile()
        )
        decision = Authorizer(policies).authorize(make_context())
        assert decision.is_forbidden


class TestCombination:
    """Test AND across normal policies"""

    def test_filters_are_anded(self, post_entity, make_context, actor_a):
        policies = (
            PolicySetBuilder(post_entity)
            .policy(always(), authorize_if(relates_to_actor_via("owner")))
            .policy(always(), forbid_if(HIDDEN), authorize_if(always()))
            .compile()
        )
        decision = Authorizer(policies).authorize(make_context(actor=actor_a))
        assert decision == FilteredBy(
            filter=And((owned_by("A"), Not(HIDDEN))),
            policies_evaluated=("policy true", "policy true")
        )

    def test_forbidden_fails_fast(self, post_entity, make_context, actor_a):
        policies = (
            PolicySetBuilder(post_entity)
            .policy(always(), forbid_if(always()), description="first")
            .policy(always(), authorize_if(always()), description="second")
            .compile()
        )
        decision = Authorizer(policies).authorize(make_context(actor=actor_a))
        assert decision.policies_evaluated == ("first",)

    def test_all_authorized(self, post_entity, make_context, actor_a):
        policies = (
            PolicySetBuilder(post_entity)
            .policy(action_type(ActionType.READ), authorize_if(actor_present()))
            .policy(always(), forbid_unless(actor_present()), authorize_if(always()))
            .compile()
        )
        assert Authorizer(policies).authorize(make_context(actor=actor_a)).is_authorized

    def test_policies_for_other_actions_are_skipped(self, post_entity, make_context, actor_a):
        policies = (
            PolicySetBuilder(post_entity)
            .policy(action_type(ActionType.DESTROY), forbid_if(always()), description="no deletes")
            .policy(always(), authorize_if(always()), description="open")
            .compile()
        )
        authorizer = Authorizer(policies)
        read = authorizer.authorize(make_context(actor=actor_a))
        assert read == Authorized(policies_evaluated=("open",))
        destroy = authorizer.authorize(make_context("destroy", actor=actor_a))
        assert destroy.is_forbidden

    def test_custom_action_name(self, post_entity, make_context, actor_a):
        policies = (
            PolicySetBuilder(post_entity)
            .policy(action("publish"), authorize_if(relates_to_actor_via("owner")))
            .policy(action_type(ActionType.UPDATE), authorize_if(always()))
            .compile()
        )
        authorizer = Authorizer(policies)
        assert authorizer.authorize(make_context("update", actor=actor_a)).is_authorized
        publish = authorizer.authorize(make_context("publish", actor=actor_a))
        assert publish.filter == owned_by("A")

    def test_idempotent(self, post_entity, make_context, actor_a):
        policies = (
            PolicySetBuilder(post_entity)
            .policy(always(), forbid_if(HIDDEN), authorize_if(relates_to_actor_via("owner")))
            .compile()
        )
        authorizer = Authorizer(policies)
        ctx = make_context(actor=actor_a)
        assert authorizer.authorize(ctx) == authorizer.authorize(ctx)


class TestStrictCombination:
    """Test strict-only policies in the combinator"""

    long_title = calculation("long_title", lambda r: len(r.get("title") or "") > 3, "title")

    def test_strict_policy_keeps_other_filters(self, post_entity, make_context, actor_a):
        policies = (
            PolicySetBuilder(post_entity)
            .policy(always(), authorize_if(relates_to_actor_via("owner")))
            .policy(always(), authorize_if(self.long_title))
            .compile()
        )
        decision = Authorizer(policies).authorize(make_context(actor=actor_a))
        assert isinstance(decision, FilteredBy)
        assert decision.filter == owned_by("A")
        assert decision.strict_policies == (policies.policies[1],)
        assert decision.requires_strict

    def test_requires_strict_check(self, post_entity, make_context):
        policies = PolicySetBuilder(post_entity).policy(always(), authorize_if(self.long_title)).compile()
        decision = Authorizer(policies).authorize(make_context())
        assert isinstance(decision, RequiresStrictCheck)
        assert decision.residual == policies.policies

    def test_same_name_calculations_stay_distinct(self, post_entity, make_context):
        above_one = calculation("score_check", lambda r: r["score"] > 1, "score")
        above_ten = calculation("score_check", lambda r: r["score"] > 10, "score")
        policies = (
            PolicySetBuilder(post_entity)
            .policy(above_one & ~above_ten, authorize_if(always()))
            .compile()
        )
        authorizer = Authorizer(policies)
        assert authorizer.authorize_record(make_context(), {"score": 5}).is_authorized
        assert authorizer.authorize_record(make_context(), {"score": 50}).is_forbidden

    def test_record_condition_is_deferred(self, post_entity, make_context):
        policies = (
            PolicySetBuilder(post_entity)
            .policy(ref("hidden").eq(False), authorize_if(always()))
            .compile()
        )
        authorizer = Authorizer(policies)
        decision = authorizer.authorize(make_context())
        assert isinstance(decision, RequiresStrictCheck)
        assert authorizer.authorize_record(make_context(), {"hidden": False}).is_authorized
        # The policy does not apply to hidden records, so nothing does
        assert authorizer.authorize_record(make_context(), {"hidden": True}) == Forbidden(
            reasons=(NO_APPLICABLE_POLICY,)
        )

    def test_authorize_record_is_definite(self, post_entity, make_context, actor_a):
        policies = (
            PolicySetBuilder(post_entity)
            .policy(always(), authorize_if(relates_to_actor_via("owner")))
            .policy(always(), authorize_if(self.long_title))
            .compile()
        )
        authorizer = Authorizer(policies)
        ctx = make_context(actor=actor_a)
        assert authorizer.authorize_record(ctx, {"owner": {"id": "A"}, "title": "hello"}).is_authorized
        assert authorizer.authorize_record(ctx, {"owner": {"id": "A"}, "title": "hi"}).is_forbidden
        assert authorizer.authorize_record(ctx, {"owner": {"id": "B"}, "title": "hello"}).is_forbidden


class TestFilterStrictEquivalence:
    """Combined filters classify records like per-record evaluation"""

    records = [
        {"id": 1, "owner": {"id": "A"}, "hidden": True, "score": 5, "editors": [{"id": "C"}]},
        {"id": 2, "owner": {"id": "B"}, "hidden": False, "score": 1, "editors": []},
        {"id": 3, "owner": {"id": "B"}, "hidden": True, "score": 7, "editors": [{"id": "A"}]},
        {"id": 4, "owner": None, "hidden": False, "score": None, "editors": []},
    ]

    def test_equivalence(self, post_entity, make_context, actor_a, actor_c):
        policies = (
            PolicySetBuilder(post_entity)
            .bypass(always(), authorize_if(relates_to_actor_via("editors")))
            .policy(always(), forbid_if(HIDDEN), authorize_if(ref("score").lt(5)),
                    authorize_if(relates_to_actor_via("owner")))
            .policy(action_type(ActionType.READ), forbid_unless(ref("score").ge(0)), authorize_if(always()))
            .compile()
        )
        compiler = ExpressionCompiler()
        for actor in (actor_a, actor_c):
            ctx = make_context(actor=actor)
            decision = combine(policies, ctx, compiler)
            assert isinstance(decision, FilteredBy)
            assert not decision.requires_strict
            for record in self.records:
                strict = combine(policies, ctx.with_record(record), compiler)
                assert evaluate_record(decision.filter, record) == strict.is_authorized


class TestEnsureAuthorized:
    """Test the raising helper"""

    def test_raises_on_forbidden(self):
        with pytest.raises(ForbiddenError) as exc_info:
            ensure_authorized(Forbidden(reasons=("nope",), policies_evaluated=("p",)))
        assert exc_info.value.reasons == ["nope"]
        assert exc_info.value.to_dict()["error"] == "forbidden"

    def test_passes_through(self):
        decision = Authorized()
        assert ensure_authorized(decision) is decision


class TestChanges:
    """Test authorization of create and update actions"""

    @pytest.fixture
    def policies(self, post_entity):
        return (
            PolicySetBuilder(post_entity)
            .policy(action_type(ActionType.CREATE), forbid_if(changing("secret")), authorize_if(actor_present()))
            .policy(action_type(ActionType.UPDATE), authorize_if(relates_to_actor_via("owner")))
            .compile()
        )

    @pytest.mark.asyncio
    async def test_create_static(self, policies, make_context, actor_a):
        authorizer = Authorizer(policies)
        allowed = await authorizer.authorize_change(make_context("create", actor=actor_a, changes={"title": "x"}))
        assert allowed.is_authorized
        denied = await authorizer.authorize_change(make_context("create", actor=actor_a, changes={"secret": "x"}))
        assert denied.is_forbidden

    @pytest.mark.asyncio
    async def test_update_loads_record(self, policies, make_context, actor_a, actor_c, store):
        authorizer = Authorizer(policies, data_layer=store)
        own = await authorizer.authorize_change(make_context("update", actor=actor_a, changes={"title": "y"}), key=1)
        assert own.is_authorized
        other = await authorizer.authorize_change(make_context("update", actor=actor_c, changes={"title": "y"}), key=1)
        assert other.is_forbidden

    @pytest.mark.asyncio
    async def test_changes_are_merged(self, policies, make_context, actor_c, store):
        # Reassigning the owner in the change itself counts
        authorizer = Authorizer(policies, data_layer=store)
        ctx = make_context("update", actor=actor_c, changes={"owner": {"id": "C"}})
        assert (await authorizer.authorize_change(ctx, key=2)).is_authorized

    @pytest.mark.asyncio
    async def test_update_without_key_uses_changes(self, policies, make_context, actor_a):
        authorizer = Authorizer(policies)
        ctx = make_context("update", actor=actor_a, changes={"title": "z"})
        assert (await authorizer.authorize_change(ctx)).is_forbidden


class TestCacheAuditMetrics:
    """Test the ambient features of the Authorizer"""

    @pytest.fixture
    def policies(self, post_entity):
        return (
            PolicySetBuilder(post_entity)
            .policy(always(), forbid_if(HIDDEN), authorize_if(relates_to_actor_via("owner")))
            .compile()
        )

    def test_cache_hits(self, policies, make_context, actor_a, actor_c):
        authorizer = Authorizer(policies, config=EngineConfig(cache_enabled=True, cache_size=8))
        first = authorizer.authorize(make_context(actor=actor_a))
        second = authorizer.authorize(make_context(actor=actor_a))
        assert first == second
        assert authorizer.cache.hits == 1
        other = authorizer.authorize(make_context(actor=actor_c))
        assert other != first
        assert len(authorizer.cache) == 2

    def test_record_decisions_are_not_cached(self, policies, make_context, actor_a):
        authorizer = Authorizer(policies, config=EngineConfig(cache_enabled=True))
        authorizer.authorize_record(make_context(actor=actor_a), {"owner": {"id": "A"}, "hidden": False})
        assert len(authorizer.cache) == 0

    @pytest.mark.asyncio
    async def test_audit_events(self, policies, make_context, actor_a):
        audit = MemoryAuditLogger()
        authorizer = Authorizer(policies, audit_logger=audit)
        authorizer.authorize(make_context(actor=actor_a))
        authorizer.authorize_record(make_context(actor=actor_a), {"owner": {"id": "B"}, "hidden": False})

        events = await audit.get_events(entity="post")
        assert [e.outcome for e in events] == ["filtered", "forbidden"]
        assert events[0].actor_id == "A"
        assert await audit.get_events(outcome="authorized") == []

    def test_audit_from_config(self, policies):
        authorizer = Authorizer(policies, config=EngineConfig(audit_enabled=True, audit_max_entries=5))
        assert isinstance(authorizer.audit_logger, MemoryAuditLogger)
        assert authorizer.audit_logger.max_entries == 5

    def test_metrics(self, policies, make_context, actor_a):
        metrics = DecisionMetrics()
        authorizer = Authorizer(policies, metrics=metrics)
        authorizer.authorize(make_context(actor=actor_a))
        authorizer.authorize(make_context(actor=actor_a))

        value = metrics.registry.get_sample_value(
            'policyauth_decisions_total',
            {'entity': 'post', 'action': 'read', 'outcome': 'filtered'}
        )
        assert value == 2.0
        assert 'policyauth_decision_duration_seconds' in metrics.export()

    def test_invalid_config_rejected(self, policies):
        with pytest.raises(ValueError):
            Authorizer(policies, config=EngineConfig(cache_size=0))
