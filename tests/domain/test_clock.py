"""Clock behaviour the accrual scheduler depends on."""

from datetime import date, datetime, timezone

from ledger_kernel.domain.clock import DeterministicClock, SystemClock


class TestDeterministicClock:
    def test_default_is_monday_noon_utc(self):
        clock = DeterministicClock()
        assert clock.now() == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert clock.today() == date(2024, 1, 1)

    def test_stands_still(self):
        clock = DeterministicClock()
        assert clock.now() == clock.now()

    def test_set_date_moves_to_noon(self):
        clock = DeterministicClock()
        clock.set_date(date(2024, 2, 29))
        assert clock.now() == datetime(2024, 2, 29, 12, 0, tzinfo=timezone.utc)
        assert clock.today() == date(2024, 2, 29)

    def test_set_time(self):
        moment = datetime(2024, 3, 31, 23, 59, tzinfo=timezone.utc)
        clock = DeterministicClock()
        clock.set_time(moment)
        assert clock.today() == date(2024, 3, 31)


def test_system_clock_is_utc():
    assert SystemClock().now().tzinfo is timezone.utc
