from datetime import datetime, timedelta, timezone

from rpma.clock import as_utc, utcnow


def test_naive_values_are_read_as_utc():
    naive = datetime(2024, 5, 1, 12, 0)
    assert as_utc(naive) == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    assert as_utc(None) is None


def test_aware_values_are_converted_to_utc():
    paris = timezone(timedelta(hours=2))
    converted = as_utc(datetime(2024, 5, 1, 14, 0, tzinfo=paris))
    assert converted.tzinfo == timezone.utc
    assert converted.hour == 12
    assert utcnow().tzinfo == timezone.utc
