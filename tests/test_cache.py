import threading
import time

import pytest

from atlas_submittals.data.dto import Diagnostic, ExtractionResult
from atlas_submittals.domain.models import DocumentRecord
from atlas_submittals.services.cache import CacheState, DatasetCache

from conftest import FIXED_NOW, FakeClock


def _records(n, tag="r"):
    return [
        DocumentRecord(
            id=i,
            external_id=f"{tag}-{i}",
            project="atlas",
            title=f"Doc {i}",
            submitted_date=FIXED_NOW,
            last_updated=FIXED_NOW,
        )
        for i in range(1, n + 1)
    ]


def _ok(n, tag="r"):
    return ExtractionResult(dataset="documents", records=_records(n, tag))


def _failed(code="source_unavailable"):
    return ExtractionResult(dataset="documents", diagnostics=[Diagnostic.error(code, "boom")])


class ScriptedLoader:
    """Returns the queued results in order, repeating the last one."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        result = self.results[min(self.calls, len(self.results)) - 1]
        if isinstance(result, Exception):
            raise result
        return result


def test_first_read_loads_synchronously(clock):
    loader = ScriptedLoader(_ok(3))
    cache = DatasetCache("documents", loader, clock=clock)
    assert cache.state == CacheState.UNINITIALIZED

    assert len(cache.get()) == 3
    assert cache.state == CacheState.READY
    assert loader.calls == 1


def test_fresh_reads_do_not_reload(clock):
    loader = ScriptedLoader(_ok(3), _ok(5))
    cache = DatasetCache("documents", loader, staleness_seconds=30, clock=clock)
    cache.get()
    clock.advance(29)
    assert len(cache.get()) == 3
    assert loader.calls == 1


def test_stale_read_refreshes(clock):
    loader = ScriptedLoader(_ok(3), _ok(5))
    cache = DatasetCache("documents", loader, staleness_seconds=30, clock=clock)
    cache.get()
    clock.advance(30)
    assert cache.is_stale()
    assert len(cache.get()) == 5
    assert loader.calls == 2


def test_force_refresh_ignores_staleness(clock):
    loader = ScriptedLoader(_ok(3), _ok(4))
    cache = DatasetCache("documents", loader, clock=clock)
    cache.get()
    summary = cache.force_refresh()
    assert summary.applied
    assert summary.record_count == 4
    assert summary.cached_count == 4
    assert summary.refreshed_at == FIXED_NOW
    assert summary.to_dict()["recordCount"] == 4


def test_failed_refresh_keeps_previous_batch(clock):
    loader = ScriptedLoader(_ok(3), _failed())
    cache = DatasetCache("documents", loader, clock=clock)
    cache.get()
    first_refresh = cache.snapshot.refreshed_at

    clock.advance(60)
    summary = cache.force_refresh()
    assert not summary.applied
    assert summary.record_count == 0
    assert summary.cached_count == 3
    assert summary.error_count == 1
    assert len(cache.get()) == 3
    assert [d.code for d in cache.diagnostics()] == ["source_unavailable"]
    assert cache.snapshot.refreshed_at == first_refresh
    assert cache.state == CacheState.READY


def test_first_refresh_failure_serves_empty(clock):
    cache = DatasetCache("documents", ScriptedLoader(_failed("header_not_found")), clock=clock)
    assert cache.get() == ()
    assert cache.state == CacheState.READY
    assert cache.snapshot.refreshed_at is None


def test_loader_exception_never_reaches_readers(clock):
    loader = ScriptedLoader(_ok(2), RuntimeError("disk on fire"))
    cache = DatasetCache("documents", loader, clock=clock)
    cache.get()
    summary = cache.force_refresh()
    assert not summary.applied
    assert len(cache.get()) == 2
    diag = cache.diagnostics()[0]
    assert diag.code == "refresh_failed"
    assert "disk on fire" in diag.message


def test_failed_run_waits_for_staleness_before_retrying(clock):
    loader = ScriptedLoader(_failed())
    cache = DatasetCache("documents", loader, staleness_seconds=30, clock=clock)
    cache.get()
    cache.get()
    assert loader.calls == 1


def test_parse_timeout_counts_as_failure(clock):
    def slow_loader():
        time.sleep(0.5)
        return _ok(9)

    cache = DatasetCache("documents", slow_loader, clock=clock, parse_timeout=0.05)
    summary = cache.force_refresh()
    assert not summary.applied
    assert [d.code for d in cache.diagnostics()] == ["refresh_timeout"]
    assert cache.get() == ()


def test_timed_out_run_blocks_new_runs_until_it_finishes(clock):
    release = threading.Event()
    guard = threading.Lock()
    counts = {"calls": 0, "active": 0, "peak": 0}

    def loader():
        with guard:
            counts["calls"] += 1
            counts["active"] += 1
            counts["peak"] = max(counts["peak"], counts["active"])
        try:
            release.wait(timeout=5)
            return _ok(2)
        finally:
            with guard:
                counts["active"] -= 1

    cache = DatasetCache("documents", loader, clock=clock, parse_timeout=0.05)
    summaries = [cache.force_refresh() for _ in range(3)]

    assert [s.applied for s in summaries] == [False, False, False]
    assert cache.busy
    assert counts["calls"] == 1
    assert cache.refresh_if_idle().applied is False
    assert counts["peak"] == 1

    release.set()
    deadline = time.monotonic() + 5
    while cache.busy and time.monotonic() < deadline:
        time.sleep(0.01)
    assert not cache.busy

    summary = cache.force_refresh()
    assert summary.applied
    assert counts["calls"] == 2
    assert counts["peak"] == 1


class BlockingLoader:
    def __init__(self):
        self.calls = 0
        self.started = threading.Event()
        self.release = threading.Event()
        self.gate_first_only = False

    def __call__(self):
        self.calls += 1
        n = self.calls
        self.started.set()
        if not (self.gate_first_only and n > 1):
            assert self.release.wait(timeout=5)
        return _ok(3 if n % 2 else 5, tag=f"run{n}")


def test_concurrent_force_refreshes_coalesce(clock):
    loader = BlockingLoader()
    loader.gate_first_only = True
    cache = DatasetCache("documents", loader, clock=clock)

    first = threading.Thread(target=cache.force_refresh)
    first.start()
    assert loader.started.wait(timeout=5)

    waiters = [threading.Thread(target=cache.force_refresh) for _ in range(4)]
    for t in waiters:
        t.start()
    time.sleep(0.2)
    loader.release.set()
    for t in [first, *waiters]:
        t.join(timeout=5)

    # The in-flight run plus one shared run for everyone who queued behind it
    assert loader.calls == 2


def test_stale_read_during_refresh_returns_previous_batch(clock):
    loader = BlockingLoader()
    cache = DatasetCache("documents", loader, staleness_seconds=30, clock=clock)
    loader.release.set()
    assert len(cache.get()) == 3

    loader.release.clear()
    loader.started.clear()
    clock.advance(31)
    refresher = threading.Thread(target=cache.force_refresh)
    refresher.start()
    assert loader.started.wait(timeout=5)

    started = time.monotonic()
    records = cache.get()
    assert time.monotonic() - started < 1
    assert [r.external_id for r in records] == ["run1-1", "run1-2", "run1-3"]
    assert cache.state == CacheState.REFRESHING

    loader.release.set()
    refresher.join(timeout=5)
    assert len(cache.get()) == 5


def test_readers_never_see_torn_batches():
    counter = {"n": 0}

    def alternating():
        counter["n"] += 1
        return _ok(3 if counter["n"] % 2 else 500)

    cache = DatasetCache("documents", alternating, staleness_seconds=3600, clock=FakeClock())
    cache.get()
    seen = set()
    stop = threading.Event()

    def reader():
        while not stop.is_set():
            seen.add(len(cache.get()))

    readers = [threading.Thread(target=reader) for _ in range(3)]
    for t in readers:
        t.start()
    for _ in range(20):
        cache.force_refresh()
    stop.set()
    for t in readers:
        t.join(timeout=5)

    assert seen <= {3, 500}


def test_refresh_if_idle_skips_when_busy(clock):
    loader = BlockingLoader()
    cache = DatasetCache("documents", loader, clock=clock)
    t = threading.Thread(target=cache.force_refresh)
    t.start()
    assert loader.started.wait(timeout=5)
    assert cache.refresh_if_idle() is None
    loader.release.set()
    t.join(timeout=5)
    assert cache.refresh_if_idle() is not None


@pytest.mark.parametrize("age,stale", [(0, False), (29.9, False), (30, True), (120, True)])
def test_staleness_window(clock, age, stale):
    cache = DatasetCache("documents", ScriptedLoader(_ok(1)), staleness_seconds=30, clock=clock)
    cache.get()
    clock.advance(age)
    assert cache.is_stale() is stale
