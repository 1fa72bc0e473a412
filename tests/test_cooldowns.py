from datetime import timedelta

import pytest

from botkit.cooldowns import CooldownLedger


class TestCooldownLedger:
    def test_bucket_starts_full_and_empties(self, clock):
        ledger = CooldownLedger(clock)
        results = [ledger.try_consume("k", timedelta(minutes=1), 3) for _ in range(4)]
        assert results == [True, True, True, False]
        assert ledger.remaining("k") == 0

    def test_refills_one_charge_per_whole_interval(self, clock):
        ledger = CooldownLedger(clock)
        for _ in range(2):
            assert ledger.try_consume("k", timedelta(minutes=1), 2)
        clock.advance(seconds=59)
        assert not ledger.try_consume("k", timedelta(minutes=1), 2)
        clock.advance(seconds=1)
        assert ledger.try_consume("k", timedelta(minutes=1), 2)
        assert not ledger.try_consume("k", timedelta(minutes=1), 2)

    def test_partial_progress_carries_over(self, clock):
        ledger = CooldownLedger(clock)
        assert ledger.try_consume("k", timedelta(minutes=1), 1)
        clock.advance(seconds=90)
        assert ledger.try_consume("k", timedelta(minutes=1), 1)
        # 30s of progress remain from the previous refill
        clock.advance(seconds=30)
        assert ledger.try_consume("k", timedelta(minutes=1), 1)

    def test_refill_is_capped_at_max(self, clock):
        ledger = CooldownLedger(clock)
        assert ledger.try_consume("k", timedelta(minutes=1), 2)
        clock.advance(hours=5)
        results = [ledger.try_consume("k", timedelta(minutes=1), 2) for _ in range(3)]
        assert results == [True, True, False]

    def test_window_never_exceeds_max_plus_initial_bucket(self, clock):
        ledger = CooldownLedger(clock)
        granted = 0
        for _ in range(60):
            if ledger.try_consume("k", timedelta(minutes=1), 3):
                granted += 1
            clock.advance(seconds=1)
        assert granted <= 3 + 3

    def test_keys_are_independent(self, clock):
        ledger = CooldownLedger(clock)
        assert ledger.try_consume("a", timedelta(minutes=1), 1)
        assert ledger.try_consume("b", timedelta(minutes=1), 1)
        assert not ledger.try_consume("a", timedelta(minutes=1), 1)

    @pytest.mark.parametrize("charges, interval", [(0, timedelta(minutes=1)), (1, timedelta(0))])
    def test_invalid_settings_raise(self, clock, charges, interval):
        with pytest.raises(ValueError):
            CooldownLedger(clock).try_consume("k", interval, charges)

    def test_item_sub_limit(self, clock):
        ledger = CooldownLedger(clock)
        use = lambda item: ledger.try_consume(
            "k", timedelta(minutes=1), 10, item=item, item_max=1, item_refill_interval=timedelta(minutes=5)
        )
        assert use("🎉")
        assert not use("🎉")
        assert use("👋")
        clock.advance(minutes=5)
        assert use("🎉")

    def test_reset_forgets_the_bucket(self, clock):
        ledger = CooldownLedger(clock)
        assert ledger.try_consume("k", timedelta(minutes=1), 1)
        ledger.reset("k")
        assert ledger.remaining("k") is None
        assert ledger.try_consume("k", timedelta(minutes=1), 1)
