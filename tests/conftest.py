"""Pytest configuration: registry fixtures shared by the suite."""

import pytest

from leiMatchAPI.parser import parse_record
from tests.payloads import (
    ACME_LEI,
    CHILD_LEI,
    OTHER_CHILD_LEI,
    PARENT_LEI,
    ULTIMATE_LEI,
    FakeGleifClient,
    children_links,
    envelope,
    lei_record,
    parent_links,
    record_url,
)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Keep developer .env settings out of the tests."""
    for name in ("GLEIF_API_URL", "GLEIF_TIMEOUT", "GLEIF_MAX_ATTEMPTS",
                 "LEIMATCH_BATCH_CAP", "LEIMATCH_THROTTLE_MS"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def acme_resource():
    """Acme AG with a resolvable direct parent, ultimate parent and two children."""
    return lei_record(
        ACME_LEI,
        "Acme AG",
        direct_parent=parent_links(ACME_LEI, "direct"),
        ultimate_parent=parent_links(ACME_LEI, "ultimate"),
        children=children_links(ACME_LEI),
    )


@pytest.fixture
def acme(acme_resource):
    return parse_record(acme_resource)


@pytest.fixture
def registry(acme_resource):
    """Fake registry where every relationship of Acme AG resolves."""
    return FakeGleifClient(documents={
        record_url(ACME_LEI): envelope(acme_resource),
        f"{record_url(ACME_LEI)}/direct-parent": envelope(lei_record(PARENT_LEI, "Acme Holding GmbH")),
        f"{record_url(ACME_LEI)}/ultimate-parent": envelope(lei_record(ULTIMATE_LEI, "Acme Group SE")),
        f"{record_url(ACME_LEI)}/direct-children": envelope([
            lei_record(CHILD_LEI, "Acme Logistics GmbH"),
            lei_record(OTHER_CHILD_LEI, "Acme Services GmbH"),
        ]),
    })
