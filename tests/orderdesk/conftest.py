import pytest
from protean.integrations.pytest import DomainFixture


@pytest.fixture(scope="session")
def orderdesk_bed():
    from orderdesk.domain import orderdesk

    bed = DomainFixture(orderdesk)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(orderdesk_bed):
    with orderdesk_bed.domain_context():
        yield


@pytest.fixture
def stock():
    from orderdesk.stock import get_stock_query

    return get_stock_query()


@pytest.fixture
def notifier():
    from orderdesk.notifier import get_notifier

    return get_notifier()
