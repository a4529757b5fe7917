from datetime import timedelta

import pytest
from conftest import T0, make_job

from cocd.tui.view_manager import MAX_RECENT_JOBS, Overlay, View, ViewManager


def test_starts_on_recent_and_toggle_round_trips() -> None:
    views = ViewManager()
    views.cursor, views.page = 3, 1
    assert views.current_view == View.RECENT
    assert views.toggle() == View.PENDING
    assert views.toggle() == View.RECENT
    assert (views.cursor, views.page) == (0, 0)


def test_merge_replaces_by_key() -> None:
    views = ViewManager()
    views.merge(View.RECENT, [make_job("api", 1, status="in_progress")], T0)
    views.merge(View.RECENT, [make_job("api", 1, status="success", completed_at=T0)], T0)
    assert [job.status for job in views.recent] == ["success"]


def test_recent_list_is_capped() -> None:
    views = ViewManager()
    views.merge(View.RECENT, [make_job("api", i) for i in range(1, MAX_RECENT_JOBS + 11)], T0)
    assert len(views.recent) == MAX_RECENT_JOBS
    # newest first: the oldest starts fall off
    assert views.recent[0].run_id == 1


def test_new_jobs_are_highlighted_for_three_seconds() -> None:
    views = ViewManager()
    views.merge(View.PENDING, [make_job("api", 1)], T0)
    job = views.pending[0]
    assert views.is_highlighted(job, T0 + timedelta(seconds=2))
    assert not views.is_highlighted(job, T0 + timedelta(seconds=3))

    # a re-scan inside the window keeps the original deadline
    views.merge(View.PENDING, [make_job("api", 1)], T0 + timedelta(seconds=1))
    assert views.pending[0].highlight_until == T0 + timedelta(seconds=3)

    # after the window the known job is no longer new
    views.merge(View.PENDING, [make_job("api", 1)], T0 + timedelta(seconds=5))
    assert not views.pending[0].is_newly_scanned


def test_missing_active_job_moves_to_completed_overlay() -> None:
    views = ViewManager()
    views.replace_pending([make_job("api", 1), make_job("api", 2)], T0)
    views.replace_pending([make_job("api", 2)], T0 + timedelta(seconds=10))

    combined = views.combined_pending(T0 + timedelta(seconds=10))
    assert [(job.run_id, job.status) for job in combined] == [(2, "waiting"), (1, "completed")]
    completed = combined[1]
    assert views.is_completed(completed)
    assert completed.completed_at == T0 + timedelta(seconds=10)


def test_completed_overlay_never_reactivates() -> None:
    views = ViewManager()
    views.replace_pending([make_job("api", 1)], T0)
    views.replace_pending([], T0 + timedelta(seconds=1))
    views.merge(View.PENDING, [make_job("api", 1)], T0 + timedelta(seconds=2))

    combined = views.combined_pending(T0 + timedelta(seconds=2))
    assert [(job.run_id, job.status) for job in combined] == [(1, "completed")]

    # even once the overlay entry expired, the raw job stays hidden
    later = T0 + timedelta(minutes=11)
    views.expire(later)
    assert views.combined_pending(later) == []


def test_failed_repositories_are_carried_over() -> None:
    views = ViewManager()
    views.replace_pending([make_job("api", 1), make_job("web", 2)], T0)
    views.replace_pending([], T0 + timedelta(seconds=5), keep_repositories={"web"})

    combined = views.combined_pending(T0 + timedelta(seconds=5))
    assert [(job.repository, job.status) for job in combined] == [("web", "waiting"), ("api", "completed")]


def test_overlay_is_bounded_and_expires() -> None:
    views = ViewManager(max_completed=3)
    views.replace_pending([make_job("api", i) for i in range(1, 6)], T0)
    views.replace_pending([], T0 + timedelta(seconds=1))
    assert len(views.combined_pending(T0 + timedelta(seconds=1))) == 3

    later = T0 + timedelta(minutes=10, seconds=1)
    views.expire(later)
    assert views.combined_pending(later) == []


def test_pagination_math() -> None:
    views = ViewManager(page_size=50)
    assert views.page_count() == 0
    assert views.page_count(50) == 1
    assert views.page_count(51) == 2
    views.merge(View.RECENT, [make_job("api", i) for i in range(1, 121)], T0)
    assert views.page_count() == 3

    views.change_page(1)
    assert len(views.visible_jobs(T0)) == 50
    views.change_page(5)
    assert views.page == 2
    assert len(views.visible_jobs(T0)) == 20
    views.change_page(-9)
    assert views.page == 0


def test_change_page_on_empty_list_stays_on_first_page() -> None:
    views = ViewManager()
    views.change_page(1)
    assert views.page == 0


@pytest.mark.parametrize("delta, expected", [(-5, 0), (1, 2), (10, 3)])
def test_cursor_is_clamped(delta: int, expected: int) -> None:
    views = ViewManager()
    views.cursor = 1
    views.move_cursor(delta, 4)
    assert views.cursor == expected


def test_clamp_on_empty_list_is_zero() -> None:
    views = ViewManager()
    views.cursor = 7
    views.clamp_cursor(0)
    assert views.cursor == 0
    assert views.selected_job(T0) is None


def test_confirmation_overlay_allows_one_prompt() -> None:
    views = ViewManager()
    job = make_job()
    assert views.show_confirmation(Overlay.CANCEL, job)
    assert not views.show_confirmation(Overlay.APPROVE, job)
    assert views.overlay == Overlay.CANCEL
    assert not views.confirmation.confirmed
    views.select(1)
    assert views.confirmation.confirmed
    views.select(5)
    assert views.confirmation.selection == 1
    views.hide_confirmation()
    assert views.overlay == Overlay.NONE


def test_one_action_in_flight_per_job() -> None:
    views = ViewManager()
    key = make_job().key
    assert views.begin_action(key)
    assert not views.begin_action(key)
    assert views.action_in_flight(key)
    views.finish_action(key)
    assert views.begin_action(key)
