from conftest import advance

from forcenext.observe import Disposer, Scope
from forcenext.scheduler import Scheduler


class TestScheduler:
    def test_runs_due_timers_in_deadline_order(self, scheduler, clock):
        fired = []
        scheduler.call_later(300, lambda: fired.append("late"))
        scheduler.call_later(100, lambda: fired.append("early"))
        scheduler.call_later(100, lambda: fired.append("early-2"))

        advance(scheduler, clock, 99)
        assert fired == []
        advance(scheduler, clock, 250)
        assert fired == ["early", "early-2", "late"]
        assert scheduler.pending() == 0
        assert scheduler.next_due_in() is None

    def test_cancelled_timer_never_fires(self, scheduler, clock):
        fired = []
        timer = scheduler.call_later(50, lambda: fired.append(1))
        timer.cancel()
        advance(scheduler, clock, 100)
        assert fired == []
        assert not timer.active

    def test_failing_callback_does_not_stop_others(self, scheduler, clock):
        fired = []

        def boom():
            raise RuntimeError("boom")

        scheduler.call_later(10, boom)
        scheduler.call_later(10, lambda: fired.append("ok"))
        advance(scheduler, clock, 20)
        assert fired == ["ok"]

    def test_next_due_in(self, clock):
        scheduler = Scheduler(clock=clock)
        scheduler.call_later(1500, lambda: None)
        assert abs(scheduler.next_due_in() - 1.5) < 1e-9


class TestScope:
    def test_close_disposes_everything_once(self, scheduler):
        released = []
        scope = Scope(scheduler, "test")
        d = scope.add(Disposer(lambda: released.append("a")))
        scope.add(Disposer(lambda: released.append("b")))
        assert scope.active() == 2

        scope.close()
        scope.close()
        d.dispose()
        assert released == ["a", "b"]
        assert scope.active() == 0

    def test_add_after_close_disposes_immediately(self, scheduler):
        released = []
        scope = Scope(scheduler)
        scope.close()
        scope.add(Disposer(lambda: released.append(1)))
        assert released == [1]

    def test_guarded_callback_is_noop_after_close(self, scheduler):
        calls = []
        scope = Scope(scheduler)
        cb = scope.guard(lambda x: calls.append(x))
        cb(1)
        scope.close()
        cb(2)
        assert calls == [1]

    def test_scope_timers_are_cancelled_on_close(self, scheduler, clock):
        fired = []
        scope = Scope(scheduler)
        scope.call_later(100, lambda: fired.append(1))
        scope.close()
        advance(scheduler, clock, 200)
        assert fired == []
        assert scheduler.pending() == 0

    def test_dispose_swallows_release_errors(self):
        def boom():
            raise RuntimeError("gone")

        d = Disposer(boom)
        d.dispose()
        assert d.disposed
