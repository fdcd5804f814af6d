"""
Tests for authorized reads: filter pushdown, strict pass and redaction.
"""

import pytest

from policyauth import (
    FORBIDDEN_FIELD,
    Actor,
    Authorized,
    Authorizer,
    FilteredBy,
    MemoryDataLayer,
    PolicySetBuilder,
    authorize_if,
    forbid_if,
)
from policyauth.errors import RecordNotFoundError, UncompilableFilterError
from policyauth.expr import actor, always, calculation, ref, relates_to_actor_via


@pytest.fixture
def owner_or_visible(post_entity):
    """Owners see everything; others see posts that are not hidden"""
    return (
        PolicySetBuilder(post_entity)
        .policy(
            always(),
            authorize_if(relates_to_actor_via("owner")),
            forbid_if(ref("hidden").eq(True)),
            authorize_if(always())
        )
        .compile()
    )


def ids(result):
    return sorted(r["id"] for r in result.records)


class TestFilteredRead:
    """Test reads decided by a pushed-down filter"""

    @pytest.mark.asyncio
    async def test_owner_sees_hidden_post(self, owner_or_visible, store, make_context, actor_a):
        authorizer = Authorizer(owner_or_visible, data_layer=store)
        result = await authorizer.read(make_context(actor=actor_a))
        assert ids(result) == [1, 2]
        assert isinstance(result.decision, FilteredBy)
        assert result.excluded == 0

    @pytest.mark.asyncio
    async def test_other_actor_sees_visible_post(self, owner_or_visible, store, make_context, actor_c):
        authorizer = Authorizer(owner_or_visible, data_layer=store)
        result = await authorizer.read(make_context(actor=actor_c))
        assert ids(result) == [2]

    @pytest.mark.asyncio
    async def test_query_filter_is_anded(self, owner_or_visible, store, make_context, actor_a):
        authorizer = Authorizer(owner_or_visible, data_layer=store)
        result = await authorizer.read(make_context(actor=actor_a), query_filter=ref("score").gt(2))
        assert ids(result) == [1]

    @pytest.mark.asyncio
    async def test_authorized_read_passes_query_filter_only(self, post_entity, store, make_context):
        policies = PolicySetBuilder(post_entity).policy(always(), authorize_if(always())).compile()
        authorizer = Authorizer(policies, data_layer=store)
        everything = await authorizer.read(make_context())
        assert isinstance(everything.decision, Authorized)
        assert ids(everything) == [1, 2]
        filtered = await authorizer.read(make_context(), query_filter=ref("hidden").eq(False))
        assert ids(filtered) == [2]

    @pytest.mark.asyncio
    async def test_forbidden_read_skips_storage(self, post_entity, store, make_context):
        authorizer = Authorizer(PolicySetBuilder(post_entity).compile(), data_layer=store)
        result = await authorizer.read(make_context())
        assert result.records == ()
        assert result.decision.is_forbidden
        assert store.queries_count == 0

    @pytest.mark.asyncio
    async def test_read_requires_data_layer(self, owner_or_visible, make_context):
        with pytest.raises(ValueError):
            await Authorizer(owner_or_visible).read(make_context())

    @pytest.mark.asyncio
    async def test_record_on_context_is_ignored(self, owner_or_visible, store, make_context, actor_c):
        authorizer = Authorizer(owner_or_visible, data_layer=store)
        ctx = make_context(actor=actor_c, record={"hidden": False, "owner": None})
        result = await authorizer.read(ctx)
        assert ids(result) == [2]


class TestStrictPass:
    """Test reads that re-check each loaded record"""

    @pytest.fixture
    def long_titles(self, post_entity):
        long_title = calculation("long_title", lambda r: len(r.get("title") or "") > 6, "title")
        return (
            PolicySetBuilder(post_entity)
            .policy(always(), forbid_if(ref("score").lt(0)), authorize_if(long_title))
            .compile()
        )

    @pytest.mark.asyncio
    async def test_strict_pass_excludes_records(self, long_titles, store, make_context):
        store.insert("post", {"id": 3, "title": "a longer title", "owner": None, "hidden": False, "score": 2})
        store.insert("post", {"id": 4, "title": "negative but long", "owner": None, "hidden": False, "score": -1})

        authorizer = Authorizer(long_titles, data_layer=store)
        result = await authorizer.read(make_context())

        assert isinstance(result.decision, FilteredBy)
        assert result.decision.requires_strict
        # The prefilter drops record 4 in storage; the strict pass drops 1 and 2
        assert ids(result) == [3]
        assert result.excluded == 2

    @pytest.mark.asyncio
    async def test_uncompilable_filter_is_rejected(self, store):
        long_title = calculation("long_title", lambda r: True, "title")
        with pytest.raises(UncompilableFilterError):
            await store.run_query("post", long_title)


class TestRedactedRead:
    """Test field redaction applied to read results"""

    @pytest.mark.asyncio
    async def test_secret_hidden_from_non_owner(self, post_entity, store, make_context, actor_a):
        policies = (
            PolicySetBuilder(post_entity)
            .policy(always(), authorize_if(always()))
            .field_policy("secret", authorize_if(relates_to_actor_via("owner")))
            .field_policy("*", authorize_if(always()))
            .compile()
        )
        store.insert("post", {"id": 1, "title": "first", "owner": {"id": "A"}, "hidden": True,
                              "score": 5, "secret": "s1"})
        store.insert("post", {"id": 2, "title": "second", "owner": {"id": "B"}, "hidden": False,
                              "score": 1, "secret": "s2"})

        authorizer = Authorizer(policies, data_layer=store)
        result = await authorizer.read(make_context(actor=actor_a), redact_fields=True)

        by_id = {r["id"]: r for r in result.records}
        assert by_id[1]["secret"] == "s1"
        assert by_id[2]["secret"] is FORBIDDEN_FIELD
        assert by_id[2]["title"] == "second"


class TestMemoryDataLayer:
    """Test the in-memory storage collaborator"""

    @pytest.mark.asyncio
    async def test_get(self, store):
        record = await store.get("post", 1)
        assert record["title"] == "first"

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        with pytest.raises(RecordNotFoundError):
            await store.get("post", 99)

    @pytest.mark.asyncio
    async def test_records_are_copies(self, store):
        record = await store.get("post", 1)
        record["title"] = "changed"
        assert (await store.get("post", 1))["title"] == "first"

    def test_custom_primary_key(self):
        data = MemoryDataLayer(primary_keys={"user": "name"})
        data.insert("user", {"name": "ann"})
        assert data.count("user") == 1
        assert data.delete("user", "ann")
        assert data.count("user") == 0


class TestNilComparisons:
    """Test that nil values never satisfy a comparison in reads"""

    @pytest.fixture
    def same_org(self, post_entity):
        return (
            PolicySetBuilder(post_entity)
            .policy(always(), authorize_if(ref("owner_id").eq(actor("org"))))
            .compile()
        )

    @pytest.fixture
    def org_store(self, store):
        store.insert("post", {"id": 3, "title": "no owner", "owner_id": None, "hidden": False, "score": 1})
        store.insert("post", {"id": 4, "title": "owned", "owner_id": "X", "hidden": False, "score": 1})
        return store

    @pytest.mark.asyncio
    async def test_actor_without_attribute_sees_nothing(self, same_org, org_store, make_context, actor_c):
        authorizer = Authorizer(same_org, data_layer=org_store)
        result = await authorizer.read(make_context(actor=actor_c))
        assert ids(result) == []
        # The nil comparison folds to false before storage is asked
        assert result.decision.is_forbidden
        assert org_store.queries_count == 0

    @pytest.mark.asyncio
    async def test_actor_with_attribute_sees_matching_records(self, same_org, org_store, make_context):
        authorizer = Authorizer(same_org, data_layer=org_store)
        result = await authorizer.read(make_context(actor=Actor(id="D", attributes={"org": "X"})))
        assert isinstance(result.decision, FilteredBy)
        assert ids(result) == [4]

    @pytest.mark.asyncio
    async def test_record_check_agrees_with_filter(self, same_org, org_store, make_context, actor_c):
        authorizer = Authorizer(same_org, data_layer=org_store)
        ctx = make_context(actor=actor_c)
        for key in (1, 2, 3, 4):
            record = await org_store.get("post", key)
            assert authorizer.authorize_record(ctx, record).is_forbidden
