from datetime import timedelta

from core.scheduler import DueCampaignPoller, find_due
from tests.fakes import NOW


class FakeRunner:
    def __init__(self, fail_on=()):
        self.fail_on = set(fail_on)
        self.calls = []

    def run(self, campaign_id):
        self.calls.append(campaign_id)
        if campaign_id in self.fail_on:
            raise RuntimeError(f"campaign {campaign_id} blew up")
        return "ok"


class BrokenRepository:
    def list_active(self):
        raise RuntimeError("database is locked")


def test_find_due_filters_on_next_run(make_campaign, repo):
    due = make_campaign(name="Due")
    make_campaign(name="Future", next_run_at=NOW + timedelta(minutes=1))
    make_campaign(name="Unscheduled", next_run_at=None)
    make_campaign(name="Paused", status="inactive")

    assert [c.id for c in find_due(repo.list_all(), NOW)] == [due.id]


def test_tick_runs_every_due_campaign_in_turn(make_campaign, repo):
    first = make_campaign(name="First")
    second = make_campaign(name="Second", next_run_at=NOW - timedelta(hours=3))
    make_campaign(name="Later", next_run_at=NOW + timedelta(hours=3))
    runner = FakeRunner()

    report = DueCampaignPoller(repository=repo, runner=runner).tick(NOW)

    assert report.checked == 3
    assert sorted(report.due) == sorted([first.id, second.id])
    assert sorted(runner.calls) == sorted([first.id, second.id])
    assert report.skipped is False


def test_one_failing_campaign_does_not_stop_the_tick(make_campaign, repo):
    first = make_campaign(name="First")
    second = make_campaign(name="Second")
    runner = FakeRunner(fail_on={first.id})

    report = DueCampaignPoller(repository=repo, runner=runner).tick(NOW)

    assert sorted(runner.calls) == sorted([first.id, second.id])
    results = dict(report.results)
    assert isinstance(results[first.id], RuntimeError)
    assert results[second.id] == "ok"


def test_overlapping_tick_is_skipped(make_campaign, repo):
    make_campaign()
    runner = FakeRunner()
    poller = DueCampaignPoller(repository=repo, runner=runner)

    poller._tick_lock.acquire()
    try:
        assert poller.busy
        report = poller.tick(NOW)
    finally:
        poller._tick_lock.release()

    assert report.skipped is True
    assert runner.calls == []
    assert poller.busy is False


def test_listing_failure_is_contained():
    runner = FakeRunner()
    report = DueCampaignPoller(repository=BrokenRepository(), runner=runner).tick(NOW)
    assert report.checked == 0
    assert runner.calls == []


def test_tick_uses_clock_when_no_time_given(make_campaign, repo):
    make_campaign(next_run_at=NOW + timedelta(minutes=5))
    runner = FakeRunner()
    poller = DueCampaignPoller(repository=repo, runner=runner, clock=lambda: NOW + timedelta(minutes=5))

    assert len(poller.tick().due) == 1


def test_start_and_stop(repo):
    poller = DueCampaignPoller(repository=repo, runner=FakeRunner(), interval_seconds=3600)
    poller.start()
    try:
        assert poller.running
    finally:
        poller.stop(wait=True)
    assert not poller.running


def test_run_forever_blocks_until_interrupted(repo):
    poller = DueCampaignPoller(repository=repo, runner=FakeRunner(), interval_seconds=3600)
    naps = []

    def sleep(seconds):
        assert poller.running
        naps.append(seconds)
        if len(naps) == 2:
            raise KeyboardInterrupt

    poller.run_forever(sleep=sleep)

    assert naps == [60, 60]
    assert not poller.running


def test_run_forever_returns_when_start_fails(repo):
    class BrokenPoller(DueCampaignPoller):
        def start(self):
            raise RuntimeError("scheduler refused to start")

    naps = []
    BrokenPoller(repository=repo, runner=FakeRunner()).run_forever(sleep=naps.append)

    assert naps == []
