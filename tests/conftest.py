import pytest

from signed_webhooks.webhook.buffers import ScratchBufferPool
from signed_webhooks.webhook.clock import FixedClock
from signed_webhooks.webhook.keys import StaticKeyRetriever
from signed_webhooks.webhook.validator import ValidationPolicy, WebhookValidator

from tests.helpers import KEY, NOW


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def pool():
    return ScratchBufferPool()


@pytest.fixture
def policy():
    return ValidationPolicy()


@pytest.fixture
def validator(clock, pool, policy):
    return WebhookValidator(StaticKeyRetriever(KEY), policy=policy, clock=clock, pool=pool)
