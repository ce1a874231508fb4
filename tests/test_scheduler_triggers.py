from datetime import datetime, timedelta, timezone

import pytest
import pytz

from service.scheduler import RunScheduler, _build_trigger, _resolve_timezone

# Helpers ----------------------------------------------------------------------


def _next_times(trigger, tzinfo, count=5, start=None):
    """
    Ask a trigger for the next `count` fire times, seeding the computation
    as if the previous fire happened at `start`, so "next" means strictly after it.
    """
    if start is None:
        start = datetime.now(tz=tzinfo)

    prev = start
    now = start
    out = []
    for _ in range(count):
        nxt = trigger.get_next_fire_time(prev, now)
        if nxt is None:
            break
        out.append(nxt)
        prev = nxt
        now = nxt + timedelta(microseconds=1)
    return out


class _IdleEngine:
    def run_all(self):
        return []

    def sweep_expired(self):
        return 0


# Tests ------------------------------------------------------------------------


def test_build_trigger_accepts_interval_minutes():
    trig = _build_trigger({"interval": {"minutes": 5}}, "UTC")
    assert trig.interval.total_seconds() == 300

    ts = datetime(2099, 1, 1, 0, 0, 0, tzinfo=timezone.utc)
    times = _next_times(trig, timezone.utc, count=3, start=ts)
    assert times == [ts + timedelta(minutes=m) for m in (5, 10, 15)]


def test_build_trigger_interval_combines_fields():
    trig = _build_trigger({"interval": {"hours": 6, "minutes": 30}}, pytz.UTC)
    assert trig.interval == timedelta(hours=6, minutes=30)


def test_build_trigger_accepts_cron_numeric_fields():
    trig = _build_trigger(
        {"cron": {"second": 0, "minute": 0, "hour": 3, "day_of_week": "mon-fri"}},
        "UTC",
    )
    # 2096-01-02 is a Monday
    start = datetime(2096, 1, 2, 0, 0, 0, tzinfo=timezone.utc)
    times = _next_times(trig, timezone.utc, count=3, start=start)
    assert times[0] == datetime(2096, 1, 2, 3, 0, 0, tzinfo=timezone.utc)  # Mon
    assert times[1] == datetime(2096, 1, 3, 3, 0, 0, tzinfo=timezone.utc)  # Tue
    assert times[2] == datetime(2096, 1, 4, 3, 0, 0, tzinfo=timezone.utc)  # Wed


def test_build_trigger_accepts_cron_string_lists():
    trig = _build_trigger(
        {"cron": {"second": 0, "minute": "0,45", "hour": "5-6", "day_of_week": "mon-sat"}},
        "UTC",
    )
    # 2099-01-05 is a Monday
    start = datetime(2099, 1, 5, 4, 59, 0, tzinfo=timezone.utc)
    times = _next_times(trig, timezone.utc, count=4, start=start)
    assert [(t.hour, t.minute) for t in times] == [(5, 0), (5, 45), (6, 0), (6, 45)]


def test_build_trigger_accepts_crontab_string():
    trig = _build_trigger({"cron": "0 */6 * * *"}, "UTC")
    start = datetime(2099, 1, 5, 1, 0, 0, tzinfo=timezone.utc)
    times = _next_times(trig, timezone.utc, count=3, start=start)
    assert [t.hour for t in times] == [6, 12, 18]


@pytest.mark.parametrize(
    "payload",
    [
        {"cron": "*/15 * *"},  # only 3 fields
        {"cron": 15},
        {"cron": {"minute": 0, "weekday": "mon"}},  # unknown field
        {"interval": {"minutes": -5}},
        {"interval": {"hours": 0}},
        {"interval": {"fortnights": 1}},
        {"interval": 60},
        {"interval": {"hours": 1}, "cron": "0 * * * *"},  # two triggers
        {"date": {"run_at": "2099-01-01T00:00:00Z"}},  # one-shot runs are not schedulable
        {},
    ],
)
def test_build_trigger_invalid_inputs_raise(payload):
    with pytest.raises(ValueError):
        _build_trigger(payload, "UTC")


def test_resolve_timezone():
    assert _resolve_timezone({"timezone": "America/Montevideo"}).zone == "America/Montevideo"
    assert _resolve_timezone({"timezone": "Mars/Olympus"}) is pytz.UTC


def test_from_config_reads_schedule():
    cfg = {
        "timezone": "America/Montevideo",
        "schedule": {"cron": "30 2 * * *", "run_on_start": True, "misfire_grace_time": 120},
    }
    sched = RunScheduler.from_config(_IdleEngine(), cfg)
    assert sched.run_on_start is True
    assert sched.misfire_grace_time == 120
    assert sched.timezone.zone == "America/Montevideo"
    fields = {f.name: str(f) for f in sched.trigger_def.fields}
    assert (fields["hour"], fields["minute"]) == ("2", "30")


def test_from_config_defaults_to_six_hours():
    sched = RunScheduler.from_config(_IdleEngine(), {"timezone": "UTC"})
    assert sched.trigger_def.interval == timedelta(hours=6)
    assert sched.run_on_start is False
