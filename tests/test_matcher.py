"""
Unit tests for name matching, batch sampling, throttling and retries.
"""

import random
import threading
import time
from unittest.mock import Mock

import pytest

from leiMatchAPI.client import GleifClientError
from leiMatchAPI.dataset import SupplierDataset
from leiMatchAPI.hierarchy import HierarchyAssembler
from leiMatchAPI.matcher import NameMatcher
from leiMatchAPI.models import MatchStatus, SupplierRecord
from tests.payloads import (
    ACME_LEI,
    PARENT_LEI,
    FakeGleifClient,
    envelope,
    exception_resource,
    lei_record,
    parent_links,
    record_url,
)


def _dataset(names):
    return SupplierDataset(SupplierRecord(row_id=i, original_name=name) for i, name in enumerate(names))


def _matcher(client, **kwargs):
    kwargs.setdefault("sleep", Mock())
    return NameMatcher(client, **kwargs)


class TestNameMatcherInitialization:
    """Batch cap and throttle defaults."""

    def test_defaults(self):
        matcher = NameMatcher(FakeGleifClient())
        assert matcher.batch_cap == 40
        assert matcher.throttle_seconds == 0.25
        assert matcher.prefetch_limit == 10

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("LEIMATCH_BATCH_CAP", "5")
        monkeypatch.setenv("LEIMATCH_THROTTLE_MS", "100")
        matcher = NameMatcher(FakeGleifClient())
        assert matcher.batch_cap == 5
        assert matcher.throttle_seconds == 0.1

    @pytest.mark.parametrize("kwargs", [{"batch_cap": 0}, {"throttle_seconds": -1}])
    def test_invalid_settings(self, kwargs):
        with pytest.raises(ValueError):
            NameMatcher(FakeGleifClient(), **kwargs)


class TestMatchByName:
    """Single-name lookups."""

    def test_top_candidate_is_returned(self):
        client = FakeGleifClient(searches={"Acme AG": [
            lei_record(ACME_LEI, "Acme AG"),
            lei_record(PARENT_LEI, "Acme AG Holding"),
        ]})
        record = _matcher(client).match_by_name("Acme AG")

        assert record.lei == ACME_LEI
        assert client.calls[0][1] == {"filter[entity.legalName]": "Acme AG", "page[size]": 1}

    def test_name_is_trimmed(self):
        client = FakeGleifClient(searches={"Acme AG": [lei_record(ACME_LEI, "Acme AG")]})
        assert _matcher(client).match_by_name("  Acme AG  ").lei == ACME_LEI

    def test_no_candidates(self):
        assert _matcher(FakeGleifClient()).match_by_name("Nobody GmbH") is None

    def test_blank_name_sends_no_request(self):
        client = FakeGleifClient()
        assert _matcher(client).match_by_name("   ") is None
        assert client.calls == []

    def test_transport_failure_is_none(self):
        client = FakeGleifClient(searches={"Acme AG": GleifClientError("Network error: reset")})
        assert _matcher(client).match_by_name("Acme AG") is None

    def test_unparseable_candidate_is_none(self):
        broken = lei_record(ACME_LEI, "Acme AG")
        del broken["attributes"]["entity"]
        client = FakeGleifClient(searches={"Acme AG": [broken]})
        assert _matcher(client).match_by_name("Acme AG") is None


class TestBatchSelection:
    """Sampling of oversized inputs."""

    def test_small_input_is_taken_whole(self):
        matcher = _matcher(FakeGleifClient(), batch_cap=40)
        assert matcher.select_for_batch([3, 1, 2]) == [3, 1, 2]

    def test_oversized_input_is_sampled_in_order(self):
        keys = list(range(50))
        matcher = _matcher(FakeGleifClient(), batch_cap=40, rng=random.Random(7))
        selected = matcher.select_for_batch(keys)

        assert len(selected) == 40
        assert len(set(selected)) == 40
        assert selected == sorted(selected)

    def test_sample_is_not_positional(self):
        keys = list(range(50))
        samples = [
            set(_matcher(FakeGleifClient(), batch_cap=40, rng=random.Random(seed)).select_for_batch(keys))
            for seed in range(5)
        ]
        assert any(sample != set(range(40)) for sample in samples)
        assert any(sample != set(range(10, 50)) for sample in samples)
        assert len({frozenset(sample) for sample in samples}) > 1


class TestMatchBatch:
    """Batch runs over a dataset."""

    def test_cap_leaves_rest_not_attempted(self):
        names = [f"Supplier {i}" for i in range(50)]
        client = FakeGleifClient(searches={"Supplier 3": [lei_record(ACME_LEI, "Supplier 3")]})
        dataset = _dataset(names)
        summary = _matcher(client, batch_cap=40, rng=random.Random(1)).match_batch(dataset)

        statuses = [record.match_status for record in dataset]
        assert summary.total == 50
        assert summary.attempted == 40
        assert summary.not_attempted == 10
        assert statuses.count(MatchStatus.NOT_ATTEMPTED) == 10
        assert len(client.calls) == 40
        assert summary.matched + summary.no_match == 40

    def test_requests_follow_input_order(self):
        names = [f"Supplier {i}" for i in range(50)]
        client = FakeGleifClient()
        _matcher(client, batch_cap=40, rng=random.Random(3)).match_batch(_dataset(names))

        queried = [params["filter[entity.legalName]"] for _, params in client.calls]
        positions = [names.index(name) for name in queried]
        assert positions == sorted(positions)

    def test_matches_are_recorded(self):
        client = FakeGleifClient(searches={"Acme AG": [lei_record(ACME_LEI, "Acme AG")]})
        dataset = _dataset(["Acme AG", "Nobody GmbH"])
        summary = _matcher(client).match_batch(dataset)

        matched, unmatched = dataset.snapshot()
        assert matched.match_status is MatchStatus.MATCHED
        assert matched.company.lei == ACME_LEI
        assert unmatched.match_status is MatchStatus.NO_MATCH
        assert unmatched.company is None
        assert (summary.matched, summary.no_match, summary.errors) == (1, 1, 0)

    def test_failure_does_not_stop_batch(self):
        client = FakeGleifClient(searches={
            "Broken Ltd": GleifClientError("Network error: reset"),
            "Acme AG": [lei_record(ACME_LEI, "Acme AG")],
        })
        dataset = _dataset(["Broken Ltd", "Acme AG"])
        summary = _matcher(client).match_batch(dataset)

        broken, acme = dataset.snapshot()
        assert broken.match_status is MatchStatus.NO_MATCH
        assert acme.match_status is MatchStatus.MATCHED
        assert summary.errors == 1
        assert summary.no_match == 1

    def test_sleep_after_every_request(self):
        sleep = Mock()
        _matcher(FakeGleifClient(), throttle_seconds=0.25, sleep=sleep).match_batch(_dataset(["A", "B", "C"]))
        assert sleep.call_count == 3
        sleep.assert_called_with(0.25)

    def test_throttle_spaces_requests(self):
        dataset = _dataset(["A", "B", "C", "D"])
        matcher = NameMatcher(FakeGleifClient(), throttle_seconds=0.25)

        started = time.monotonic()
        matcher.match_batch(dataset)
        assert time.monotonic() - started >= 4 * 0.25

    def test_progress_callback(self):
        progress = Mock()
        _matcher(FakeGleifClient()).match_batch(_dataset(["A", "B"]), progress=progress)

        assert [call.args[:2] for call in progress.call_args_list] == [(1, 2), (2, 2)]
        assert progress.call_args_list[-1].args[2].original_name == "B"

    def test_empty_dataset(self):
        summary = _matcher(FakeGleifClient()).match_batch(SupplierDataset())
        assert summary.total == 0
        assert summary.attempted == 0


class TestPrefetch:
    """Exception reasons attached to matched records."""

    def _client(self, count=1):
        names = [f"Acme {i}" for i in range(count)]
        searches = {
            name: [lei_record(ACME_LEI, name, direct_parent=parent_links(
                ACME_LEI, "direct", lei_record=False, exception=True))]
            for name in names
        }
        documents = {
            f"{record_url(ACME_LEI)}/direct-parent-reporting-exception":
                envelope(exception_resource(ACME_LEI, "NO_LEI")),
        }
        return FakeGleifClient(documents=documents, searches=searches), names

    def test_reason_is_attached(self):
        client, names = self._client()
        dataset = _dataset(names)
        _matcher(client).match_batch(dataset)

        company = dataset.get(0).company
        assert company.direct_parent.reason == "NO_LEI"

    def test_prefetch_limited_to_first_rows(self):
        client, names = self._client(count=12)
        dataset = _dataset(names)
        _matcher(client, prefetch_limit=10).match_batch(dataset)

        reasons = [record.company.direct_parent.reason for record in dataset]
        assert reasons == ["NO_LEI"] * 10 + [None] * 2

    def test_prefetch_failure_keeps_match(self):
        client, names = self._client()
        client.documents[f"{record_url(ACME_LEI)}/direct-parent-reporting-exception"] = GleifClientError("boom")
        dataset = _dataset(names)
        _matcher(client).match_batch(dataset)

        record = dataset.get(0)
        assert record.match_status is MatchStatus.MATCHED
        assert record.company.direct_parent.reason is None

    def test_lei_record_link_takes_precedence(self):
        exception_url = f"{record_url(ACME_LEI)}/direct-parent-reporting-exception"
        client = FakeGleifClient(
            documents={
                exception_url: envelope(exception_resource(ACME_LEI, "NO_LEI")),
                f"{record_url(ACME_LEI)}/direct-parent": envelope(lei_record(PARENT_LEI, "Acme Holding GmbH")),
            },
            searches={"Acme AG": [lei_record(ACME_LEI, "Acme AG", direct_parent=parent_links(
                ACME_LEI, "direct", lei_record=True, exception=True))]},
        )
        dataset = _dataset(["Acme AG"])
        _matcher(client).match_batch(dataset)

        company = dataset.get(0).company
        assert company.direct_parent.reason is None
        assert exception_url not in client.urls()

        view = HierarchyAssembler(client).assemble(company)
        assert view.direct_parent.lei == PARENT_LEI
        assert view.direct_parent_exception is None


class TestRetryRecord:
    """Retrying a single row."""

    def test_retry_turns_no_match_into_match(self):
        client = FakeGleifClient()
        dataset = _dataset(["Acme AG"])
        matcher = _matcher(client)
        matcher.match_batch(dataset)
        assert dataset.get(0).match_status is MatchStatus.NO_MATCH

        client.searches["Acme AG"] = [lei_record(ACME_LEI, "Acme AG")]
        updated = matcher.retry_record(dataset, 0)

        assert updated.match_status is MatchStatus.MATCHED
        assert dataset.get(0) == updated
        assert not dataset.is_pending(0)

    def test_retry_of_not_attempted_row(self):
        client = FakeGleifClient(searches={"Acme AG": [lei_record(ACME_LEI, "Acme AG")]})
        dataset = _dataset(["Acme AG"])
        assert _matcher(client).retry_record(dataset, 0).company.lei == ACME_LEI

    def test_matched_row_is_left_alone(self):
        client = FakeGleifClient(searches={"Acme AG": [lei_record(ACME_LEI, "Acme AG")]})
        dataset = _dataset(["Acme AG"])
        matcher = _matcher(client)
        matcher.match_batch(dataset)
        calls = len(client.calls)

        assert matcher.retry_record(dataset, 0) is None
        assert len(client.calls) == calls

    def test_retry_while_pending_is_ignored(self):
        client = FakeGleifClient()
        dataset = _dataset(["Acme AG"])
        dataset.mark_pending(0)

        assert _matcher(client).retry_record(dataset, 0) is None
        assert client.calls == []
        assert dataset.is_pending(0)

    def test_concurrent_retries_issue_one_request(self):
        entered = threading.Event()
        release = threading.Event()
        client = FakeGleifClient(searches={"Acme AG": [lei_record(ACME_LEI, "Acme AG")]})
        original_search = client.search_by_name

        def slow_search(name, page_size=1):
            entered.set()
            release.wait(5)
            return original_search(name, page_size=page_size)

        client.search_by_name = slow_search
        dataset = _dataset(["Acme AG"])
        matcher = _matcher(client)

        worker = threading.Thread(target=matcher.retry_record, args=(dataset, 0))
        worker.start()
        assert entered.wait(5)
        assert matcher.retry_record(dataset, 0) is None
        release.set()
        worker.join(5)

        assert len(client.calls) == 1
        assert dataset.get(0).match_status is MatchStatus.MATCHED
        assert not dataset.is_pending(0)

    def test_pending_cleared_after_failure(self):
        client = FakeGleifClient(searches={"Acme AG": GleifClientError("boom")})
        dataset = _dataset(["Acme AG"])
        updated = _matcher(client).retry_record(dataset, 0)

        assert updated.match_status is MatchStatus.NO_MATCH
        assert not dataset.is_pending(0)
