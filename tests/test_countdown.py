import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from countdown import AttemptCountdown  # noqa: E402
from conftest import FakeClock, FakeTimer  # noqa: E402


def _countdown(seconds=60):
    clock = FakeClock(1000.0)
    made = []
    fired = []

    def factory(interval, fn):
        t = FakeTimer(interval, fn)
        made.append(t)
        return t

    cd = AttemptCountdown("att-1", clock() + seconds, fired.append, clock=clock, timer_factory=factory)
    return cd, clock, made, fired


def test_remaining_counts_down_and_never_goes_negative():
    cd, clock, _, _ = _countdown(60)
    assert cd.remaining() == 60
    clock.advance(10.2)
    assert cd.remaining() == 50
    clock.advance(100)
    assert cd.remaining() == 0


def test_start_arms_one_daemon_timer_for_the_remaining_time():
    cd, clock, made, _ = _countdown(60)
    clock.advance(15)
    cd.start()
    cd.start()
    assert len(made) == 1
    assert made[0].interval == 45
    assert made[0].daemon is True
    assert made[0].started


def test_fires_terminal_action_exactly_once():
    cd, _, made, fired = _countdown(5)
    cd.start()
    made[0].fire()
    cd._fire()
    assert fired == ["att-1"]


def test_cancel_prevents_expiry():
    cd, _, made, fired = _countdown(5)
    cd.start()
    cd.cancel()
    assert made[0].cancelled
    cd._fire()
    assert fired == []
    # cancelled countdowns cannot be re-armed
    cd.start()
    assert len(made) == 1


def test_failing_action_does_not_escape_timer_thread():
    calls = []

    def boom(attempt_id):
        calls.append(attempt_id)
        raise RuntimeError("store down")

    cd = AttemptCountdown("att-2", 1, boom, clock=FakeClock(0), timer_factory=FakeTimer)
    cd._fire()
    cd._fire()
    assert calls == ["att-2"]
