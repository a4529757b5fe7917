from datetime import timedelta
from typing import List, Tuple

from conftest import T0, make_job
from hypothesis import given, settings
from hypothesis import strategies as st

from cocd.scanner.models import JobRecord, sort_by_start, sort_recent
from cocd.tui.view_manager import View, ViewManager

job_strategy = st.builds(
    lambda repository, run_id, status, minutes: make_job(
        repository, run_id, status=status, started_at=T0 - timedelta(minutes=minutes)
    ),
    repository=st.sampled_from(["api", "web", "infra"]),
    run_id=st.integers(min_value=1, max_value=8),
    status=st.sampled_from(["waiting", "queued", "in_progress", "success", "failure"]),
    minutes=st.integers(min_value=0, max_value=600),
)
batches_strategy = st.lists(st.lists(job_strategy, max_size=6), max_size=8)


@settings(max_examples=100, deadline=None)
@given(batches=batches_strategy, view=st.sampled_from([View.PENDING, View.RECENT]))
def test_merge_keeps_one_row_per_key(batches: List[List[JobRecord]], view: View) -> None:
    """Whatever order streamed batches arrive in, each key appears exactly once."""
    views = ViewManager()
    for i, batch in enumerate(batches):
        views.merge(view, batch, T0 + timedelta(seconds=i))
    rows = views.pending if view == View.PENDING else views.recent
    keys = [job.key for job in rows]
    assert len(keys) == len(set(keys))
    assert set(keys) == {job.key for batch in batches for job in batch}


@settings(max_examples=100, deadline=None)
@given(jobs=st.lists(job_strategy, max_size=20))
def test_sorting_is_idempotent(jobs: List[JobRecord]) -> None:
    once = sort_by_start(jobs)
    assert sort_by_start(once) == once
    newest = sort_recent(jobs)
    assert sort_recent(newest) == newest


@settings(max_examples=100, deadline=None)
@given(snapshots=st.lists(st.lists(job_strategy, max_size=6), min_size=1, max_size=6))
def test_completed_overlay_never_reports_active(snapshots: List[List[JobRecord]]) -> None:
    views = ViewManager()
    retired = set()
    for i, snapshot in enumerate(snapshots):
        now = T0 + timedelta(seconds=i)
        before = {job.key for job in views.pending if job.is_active}
        views.replace_pending(snapshot, now)
        retired |= before - {job.key for job in snapshot}
        for job in views.combined_pending(now):
            if job.key in retired:
                assert not job.is_active


@settings(max_examples=100, deadline=None)
@given(total=st.integers(min_value=0, max_value=400), size=st.integers(min_value=1, max_value=60))
def test_page_count_covers_every_row(total: int, size: int) -> None:
    views = ViewManager(page_size=size)
    pages = views.page_count(total)
    assert pages * size >= total
    assert (pages - 1) * size < total or total == 0


@settings(max_examples=100, deadline=None)
@given(
    moves=st.lists(st.integers(min_value=-10, max_value=10), max_size=20),
    count=st.integers(min_value=0, max_value=30),
)
def test_cursor_stays_in_range(moves: List[int], count: int) -> None:
    views = ViewManager()
    for delta in moves:
        views.move_cursor(delta, count)
        assert 0 <= views.cursor <= max(0, count - 1)


@settings(max_examples=50, deadline=None)
@given(
    pending=st.lists(job_strategy, max_size=8),
    recent=st.lists(job_strategy, max_size=8),
    toggles=st.integers(min_value=0, max_value=10),
    cursor=st.integers(min_value=1, max_value=7),
)
def test_toggle_twice_is_identity(
    pending: List[JobRecord], recent: List[JobRecord], toggles: int, cursor: int
) -> None:
    views = ViewManager()
    views.replace_pending(pending, T0)
    views.merge(View.RECENT, recent, T0)
    start: Tuple[View, int] = (views.current_view, views.page)
    pending_before = list(views.pending)
    combined_before = views.combined_pending(T0)
    for _ in range(toggles * 2):
        views.cursor = cursor
        views.toggle()
        assert views.cursor == 0
    assert (views.current_view, views.page) == start
    assert views.pending == pending_before
    assert views.combined_pending(T0) == combined_before
