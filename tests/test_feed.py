"""
Unit Tests for the live campaign donation feed
"""
import asyncio
from decimal import Decimal

import pytest

from denasetu.core.exceptions import StoreError
from denasetu.realtime.feed import Backoff, CampaignDonationFeed


class Recorder:
    """Listener that keeps every snapshot it is sent"""

    def __init__(self):
        self.snapshots = []

    async def __call__(self, snapshot):
        self.snapshots.append(snapshot)

    @property
    def latest_payment_ids(self):
        return [d.payment_id for d in self.snapshots[-1]]


class FakeSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)
        await asyncio.sleep(0)


async def wait_until(condition, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not condition():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def add_campaign_donation(store, campaign_id, payment_id, donor_id="d-42", amount="500"):
    return store.insert("campaign_donations", {
        "campaign_id": campaign_id,
        "donor_id": donor_id,
        "amount": Decimal(amount),
        "payment_id": payment_id,
        "order_id": f"order_{payment_id}",
    })


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def feed(session_factory, bus, recorder, fake_sleep):
    return CampaignDonationFeed(
        "c1",
        recorder,
        session_factory=session_factory,
        bus=bus,
        backoff_initial=0.5,
        backoff_max=30.0,
        sleep=fake_sleep,
    )


async def start(feed, recorder, snapshots=1):
    task = asyncio.create_task(feed.run())
    await wait_until(lambda: len(recorder.snapshots) >= snapshots)
    return task


async def stop(feed, task):
    feed.stop()
    await asyncio.wait_for(task, 2.0)


# ============================================================================
# BACKOFF
# ============================================================================

class TestBackoff:

    def test_doubles_up_to_cap(self):
        backoff = Backoff(0.5, 30.0)
        delays = [backoff.next_delay() for _ in range(9)]
        assert delays == [0.5, 1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0, 30.0]

    def test_reset(self):
        backoff = Backoff(0.5, 30.0)
        backoff.next_delay()
        backoff.next_delay()
        backoff.reset()
        assert backoff.next_delay() == 0.5


# ============================================================================
# LIVE UPDATES
# ============================================================================

class TestCampaignDonationFeed:

    @pytest.mark.asyncio
    async def test_initial_snapshot(self, seeded, feed, recorder):
        add_campaign_donation(seeded, "c1", "pay_1")

        task = await start(feed, recorder)

        assert recorder.latest_payment_ids == ["pay_1"]
        assert recorder.snapshots[-1][0].donor.name == "Asha Rao"
        await stop(feed, task)

    @pytest.mark.asyncio
    async def test_new_donation_pushes_requeried_list(self, seeded, feed, recorder):
        add_campaign_donation(seeded, "c1", "pay_1")
        task = await start(feed, recorder)

        add_campaign_donation(seeded, "c1", "pay_2", donor_id="d-43")
        await wait_until(lambda: len(recorder.snapshots) >= 2)

        assert recorder.latest_payment_ids == ["pay_2", "pay_1"]
        assert recorder.snapshots[-1][0].donor.name == "Vikram Shah"
        await stop(feed, task)

    @pytest.mark.asyncio
    async def test_unrelated_campaign_leaves_snapshot_unchanged(self, seeded, feed, recorder):
        add_campaign_donation(seeded, "c1", "pay_1")
        task = await start(feed, recorder)
        before = recorder.snapshots[-1]

        add_campaign_donation(seeded, "c2", "pay_other")
        await wait_until(lambda: len(recorder.snapshots) >= 2)

        assert recorder.snapshots[-1] == before
        await stop(feed, task)

    @pytest.mark.asyncio
    async def test_reconnects_after_drop_and_catches_up(self, seeded, bus, feed, recorder, fake_sleep):
        task = await start(feed, recorder)
        assert recorder.snapshots[-1] == []

        bus.drop_all()
        # Written while the feed has no subscription
        add_campaign_donation(seeded, "c1", "pay_gap")

        await wait_until(lambda: recorder.snapshots and recorder.latest_payment_ids == ["pay_gap"])
        assert fake_sleep.delays == [0.5]
        assert feed.reconnects == 1

        # Subscription is live again
        add_campaign_donation(seeded, "c1", "pay_after")
        await wait_until(lambda: recorder.latest_payment_ids == ["pay_after", "pay_gap"])
        await stop(feed, task)

    @pytest.mark.asyncio
    async def test_backoff_resets_after_successful_reconnect(self, seeded, bus, feed, recorder, fake_sleep):
        task = await start(feed, recorder)

        for expected_reconnects in (1, 2):
            snapshots_before = len(recorder.snapshots)
            bus.drop_all()
            await wait_until(lambda: len(recorder.snapshots) > snapshots_before)
            assert feed.reconnects == expected_reconnects

        assert fake_sleep.delays == [0.5, 0.5]
        await stop(feed, task)

    @pytest.mark.asyncio
    async def test_failed_requery_backs_off_exponentially(self, session_factory, bus, recorder, fake_sleep, seeded):
        class FlakyFeed(CampaignDonationFeed):
            failures = 3

            def query(self):
                if self.failures:
                    self.failures -= 1
                    raise StoreError("database unavailable")
                return super().query()

        feed = FlakyFeed("c1", recorder, session_factory=session_factory, bus=bus,
                         backoff_initial=0.5, backoff_max=30.0, sleep=fake_sleep)
        task = await start(feed, recorder)

        assert fake_sleep.delays == [0.5, 1.0, 2.0]
        assert recorder.snapshots[-1] == []
        await stop(feed, task)

    @pytest.mark.asyncio
    async def test_manual_refresh(self, seeded, bus, feed, recorder):
        task = await start(feed, recorder)
        bus.drop_all()
        await wait_until(lambda: feed.reconnects == 1 and len(recorder.snapshots) >= 2)

        add_campaign_donation(seeded, "c1", "pay_1")
        snapshot = await feed.refresh()

        assert [d.payment_id for d in snapshot] == ["pay_1"]
        assert recorder.latest_payment_ids == ["pay_1"]
        await stop(feed, task)

    @pytest.mark.asyncio
    async def test_stop_ends_run(self, bus, feed, recorder, seeded):
        task = await start(feed, recorder)
        assert bus.subscriber_count("campaign_donations") == 1

        await stop(feed, task)

        assert task.done()
        assert bus.subscriber_count("campaign_donations") == 0
