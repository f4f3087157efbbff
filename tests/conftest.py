import pytest

from throttler.limits.models import Policy
from throttler.limits.router import AdmissionRouter


@pytest.fixture()
def api_policy():
    return Policy(hostname="api.example.com", tokens_per_interval=2, interval=1000)


@pytest.fixture()
def router(api_policy):
    router = AdmissionRouter(api_policy)
    yield router
    router.clear()


@pytest.fixture()
def perform_log():
    calls = []

    async def perform(policy):
        calls.append(policy)
        return "done"

    perform.calls = calls
    return perform
