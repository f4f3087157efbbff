import asyncio
from types import SimpleNamespace

import pytest

from throttler.errors import InvalidConfigurationError, PolicyRemovedError, UnsatisfiableRequestError
from throttler.limits.models import Policy
from throttler.limits.router import AdmissionRouter


@pytest.mark.asyncio
async def test_unconfigured_destination_passes_through(router, perform_log):
    result = await router.admit_and_perform("other.example.com", perform_log)
    assert result == "done"
    assert perform_log.calls == [None]
    assert router.bucket_for("api.example.com").level == 2


@pytest.mark.asyncio
async def test_configured_destination_debits_bucket(router, perform_log):
    await router.admit_and_perform("api.example.com", perform_log)
    bucket = router.bucket_for("api.example.com")
    assert bucket.level == 1
    assert bucket.timer_active
    assert perform_log.calls == [router.policy_for("api.example.com")]


@pytest.mark.asyncio
async def test_unsatisfiable_cost_fails_before_perform(router, perform_log):
    with pytest.raises(UnsatisfiableRequestError):
        await router.admit_and_perform("api.example.com", perform_log, cost=3)
    assert perform_log.calls == []
    assert router.bucket_for("api.example.com").level == 2


@pytest.mark.asyncio
async def test_admission_is_fifo_per_destination():
    router = AdmissionRouter(Policy("api.example.com", tokens_per_interval=1, interval=20))
    order = []

    async def call(idx):
        async def perform(policy):
            order.append(idx)

        await router.admit_and_perform("api.example.com", perform)

    await asyncio.gather(*(call(idx) for idx in range(4)))
    assert order == [0, 1, 2, 3]
    router.clear()


@pytest.mark.asyncio
async def test_predicate_can_exempt_requests(perform_log):
    policy = Policy("api.example.com", 1, 1000, should_throttle=lambda request: request.method != "HEAD")
    router = AdmissionRouter(policy)
    bucket = router.bucket_for("api.example.com")

    await router.admit_and_perform("api.example.com", perform_log, request=SimpleNamespace(method="HEAD"))
    assert bucket.level == 1

    await router.admit_and_perform("api.example.com", perform_log, request=SimpleNamespace(method="GET"))
    assert bucket.level == 0
    assert len(perform_log.calls) == 2
    router.clear()


@pytest.mark.asyncio
async def test_default_predicate_skips_uncommon_methods(router, perform_log):
    bucket = router.bucket_for("api.example.com")
    await router.admit_and_perform("api.example.com", perform_log, request=SimpleNamespace(method="OPTIONS"))
    assert bucket.level == 2
    await router.admit_and_perform("api.example.com", perform_log, request=SimpleNamespace(method="patch"))
    assert bucket.level == 1


@pytest.mark.asyncio
async def test_shared_keys_keep_bucket_until_last_key_removed(perform_log):
    router = AdmissionRouter(Policy(["a.com", "b.com"], tokens_per_interval=1, interval=20))
    bucket = router.bucket_for("a.com")
    assert router.bucket_for("b.com") is bucket

    await router.admit_and_perform("a.com", perform_log)
    assert bucket.timer_active

    router.remove("a.com")
    assert router.policy_for("a.com") is None
    assert router.bucket_for("b.com") is bucket
    assert bucket.timer_active
    assert router.policies[0].hostnames == ["b.com"]

    await router.admit_and_perform("b.com", perform_log)
    assert perform_log.calls[-1] is router.policy_for("b.com")

    router.remove("b.com")
    assert bucket.closed
    assert not bucket.timer_active
    assert router.policies == []


def test_add_replaces_existing_policy_on_same_key():
    router = AdmissionRouter(Policy("a.com", 1, "second"))
    old_bucket = router.bucket_for("a.com")

    router.add(Policy(["a.com", "c.com"], 5, "minute"))

    assert old_bucket.closed
    assert len(router.policies) == 1
    policy = router.policy_for("c.com")
    assert policy.interval == 60_000
    assert policy.max_tokens == 5
    assert router.bucket_for("a.com") is router.bucket_for("c.com")


def test_replacing_one_key_of_shared_policy_keeps_the_rest():
    router = AdmissionRouter(Policy(["a.com", "b.com"], 1, "second"))
    shared = router.bucket_for("b.com")

    router.add(Policy("a.com", 10, "hour", max_tokens=20))

    assert not shared.closed
    assert router.bucket_for("b.com") is shared
    assert router.bucket_for("a.com").capacity == 20
    assert len(router.policies) == 2
    router.clear()


def test_add_accepts_a_list():
    router = AdmissionRouter([Policy("a.com", 1, 1000), Policy("b.com", 2, 1000)])
    assert {p.hostnames[0] for p in router.policies} == {"a.com", "b.com"}
    router.remove(["a.com", "b.com", "missing.com"])
    assert router.policies == []


def test_caller_policy_is_not_mutated():
    policy = Policy(["a.com", "b.com"], 1, "second")
    router = AdmissionRouter(policy)
    router.remove("a.com")
    assert policy.hostname == ["a.com", "b.com"]
    assert policy.interval == "second"
    router.clear()


def test_invalid_policy_is_not_installed():
    router = AdmissionRouter()
    with pytest.raises(InvalidConfigurationError):
        router.add(Policy("a.com", 1, "fortnight"))
    with pytest.raises(InvalidConfigurationError):
        router.add(Policy("a.com", 0, 1000))
    with pytest.raises(InvalidConfigurationError):
        router.add(Policy("a.com", "5", 1000))
    with pytest.raises(InvalidConfigurationError):
        router.add(Policy("a.com", 1, 1000, max_tokens=True))
    assert router.policies == []
    assert router.policy_for("a.com") is None


@pytest.mark.asyncio
async def test_removing_policy_fails_pending_calls(perform_log):
    router = AdmissionRouter(Policy("api.example.com", 1, "day"))
    await router.admit_and_perform("api.example.com", perform_log)
    waiting = asyncio.create_task(router.admit_and_perform("api.example.com", perform_log))
    await asyncio.sleep(0)

    router.remove("api.example.com")

    with pytest.raises(PolicyRemovedError):
        await waiting
    assert len(perform_log.calls) == 1


@pytest.mark.asyncio
async def test_clear_stops_every_bucket(perform_log):
    router = AdmissionRouter([Policy("a.com", 1, 1000), Policy("b.com", 1, 1000)])
    await router.admit_and_perform("a.com", perform_log)
    buckets = [router.bucket_for("a.com"), router.bucket_for("b.com")]

    router.clear()

    assert all(bucket.closed and not bucket.timer_active for bucket in buckets)
    assert router.policies == []
    assert await router.admit_and_perform("a.com", perform_log) == "done"
    assert perform_log.calls[-1] is None


def test_to_dict_lists_active_policies():
    router = AdmissionRouter(
        Policy(["a.com", "b.com"], 3, "minute", request_params={"key": "abc"}, request_headers={"X-Team": "core"})
    )
    assert router.to_dict() == {
        "policies": [
            {
                "hostname": ["a.com", "b.com"],
                "tokens_per_interval": 3,
                "interval": 60_000,
                "max_tokens": 3,
                "request_params": {"key": "abc"},
                "request_headers": {"X-Team": "core"},
            }
        ]
    }
    router.clear()


def test_listed_policies_are_not_changed_by_later_removals():
    router = AdmissionRouter(Policy(["a.com", "b.com"], 1, "second"))
    (listed,) = router.policies

    router.remove("a.com")

    assert listed.hostname == ("a.com", "b.com")
    assert router.policies[0].hostname == ("b.com",)
    assert router.bucket_for("b.com") is not None
    router.clear()
