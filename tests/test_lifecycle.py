import pytest

from wirecode.lifecycle import (
    PreviewController,
    RenderStatus,
    ThreadingScheduler,
)
from wirecode.render import render_host_panel

REACT = "const App = () => <Box />;"


class _Timer:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    def __init__(self):
        self.timers = []

    def call_later(self, delay, callback):
        t = _Timer(delay, callback)
        self.timers.append(t)
        return t

    def pending(self):
        return [t for t in self.timers if not t.cancelled]

    def fire_all(self):
        for t in list(self.timers):
            if not t.cancelled:
                t.callback()


class FakeFullscreenHost:
    def __init__(self):
        self.fullscreen_element = None
        self.requests = []
        self.exits = 0

    def request_fullscreen(self, element_id):
        self.requests.append(element_id)

    def exit_fullscreen(self):
        self.exits += 1


@pytest.fixture
def sched():
    return ManualScheduler()


@pytest.fixture
def ctl(sched):
    return PreviewController(sched, settle_delay=0.5)


def _error(gen, message="boom"):
    return {"type": "code-preview-error", "message": message, "generation": gen}


def test_update_starts_loading_then_settles(ctl, sched):
    doc = ctl.update(REACT)
    assert ctl.state.status is RenderStatus.LOADING
    assert ctl.busy is True
    assert ctl.document is doc
    assert [t.delay for t in sched.pending()] == [0.5]
    sched.fire_all()
    assert ctl.state.status is RenderStatus.READY
    assert ctl.busy is False


def test_error_message_wins_over_settle(ctl, sched):
    doc = ctl.update(REACT)
    assert ctl.handle_message(_error(doc.generation, "x is not defined")) is True
    assert ctl.state.status is RenderStatus.ERROR
    assert ctl.state.message == "x is not defined"
    assert ctl.busy is False
    assert sched.pending() == []
    sched.fire_all()
    assert ctl.state.status is RenderStatus.ERROR


def test_error_after_ready_still_transitions(ctl, sched):
    doc = ctl.update(REACT)
    sched.fire_all()
    assert ctl.handle_message(_error(doc.generation)) is True
    assert ctl.view().error == "boom"


def test_stale_generation_is_ignored(ctl, sched):
    first = ctl.update(REACT)
    second = ctl.update("const App = () => <Other />;")
    assert second.generation > first.generation
    assert ctl.handle_message(_error(first.generation)) is False
    assert ctl.state.status is RenderStatus.LOADING


def test_update_cancels_previous_timers_and_clears_error(ctl, sched):
    doc = ctl.update(REACT)
    first_timer = sched.timers[0]
    ctl.handle_message(_error(doc.generation))
    ctl.update(REACT)
    assert first_timer.cancelled is True
    assert ctl.state.status is RenderStatus.LOADING
    assert ctl.view().error is None
    assert len(sched.pending()) == 1


def test_stale_timer_callback_is_ignored(ctl, sched):
    ctl.update(REACT)
    stale = sched.timers[0]
    ctl.update(REACT)
    stale.callback()
    assert ctl.state.status is RenderStatus.LOADING


@pytest.mark.parametrize(
    "data",
    [
        None,
        "code-preview-error",
        {"type": "something-else", "message": "x", "generation": 1},
        {"type": "code-preview-error", "message": "no generation"},
        {"type": "code-preview-error", "message": "bad", "generation": "abc"},
    ],
)
def test_foreign_or_malformed_messages_are_rejected(ctl, data):
    ctl.update(REACT)
    assert ctl.handle_message(data) is False
    assert ctl.state.status is RenderStatus.LOADING


def test_empty_message_text_gets_default(ctl):
    doc = ctl.update(REACT)
    ctl.handle_message({"type": "code-preview-error", "message": "", "generation": doc.generation})
    assert ctl.state.message == "Unknown preview error"


def test_wait_for_load_mode(sched):
    ctl = PreviewController(sched, wait_for_load=True, load_timeout=3)
    doc = ctl.update(REACT)
    assert [t.delay for t in sched.pending()] == [3]
    assert ctl.handle_load(doc.generation - 1) is False
    assert ctl.handle_load(doc.generation) is True
    assert ctl.state.status is RenderStatus.READY
    assert sched.pending() == []


def test_load_timeout_forces_error(sched):
    ctl = PreviewController(sched, wait_for_load=True, load_timeout=3)
    ctl.update(REACT)
    sched.fire_all()
    assert ctl.state.status is RenderStatus.ERROR
    assert ctl.state.message == "Preview did not finish loading within 3 seconds"


def test_handle_load_is_ignored_in_settle_mode(ctl):
    doc = ctl.update(REACT)
    assert ctl.handle_load(doc.generation) is False
    assert ctl.state.status is RenderStatus.LOADING


def test_fullscreen_follows_change_notifications(ctl):
    host = FakeFullscreenHost()
    ctl.toggle_fullscreen(host)
    assert host.requests == [ctl.container_id]
    assert ctl.fullscreen is False

    host.fullscreen_element = ctl.container_id
    ctl.handle_fullscreen_change(host)
    assert ctl.fullscreen is True

    ctl.toggle_fullscreen(host)
    assert host.exits == 1

    # user pressed Escape: only the change event tells us
    host.fullscreen_element = None
    ctl.handle_fullscreen_change(host)
    assert ctl.fullscreen is False


def test_fullscreen_request_failure_is_tolerated(ctl):
    class Refusing(FakeFullscreenHost):
        def request_fullscreen(self, element_id):
            raise RuntimeError("denied")

    ctl.toggle_fullscreen(Refusing())
    assert ctl.fullscreen is False


def test_subscribers_get_views(ctl, sched):
    seen = []
    unsubscribe = ctl.subscribe(seen.append)
    doc = ctl.update(REACT)
    sched.fire_all()
    assert [v.status for v in seen] == [RenderStatus.LOADING, RenderStatus.READY]
    assert seen[0].generation == doc.generation
    unsubscribe()
    ctl.handle_message(_error(doc.generation))
    assert len(seen) == 2


def test_failing_subscriber_does_not_break_others(ctl):
    seen = []

    def bad(view):
        raise ValueError("listener bug")

    ctl.subscribe(bad)
    ctl.subscribe(seen.append)
    ctl.update(REACT)
    assert len(seen) == 1


def test_dispose_stops_everything(ctl, sched):
    seen = []
    ctl.subscribe(seen.append)
    doc = ctl.update(REACT)
    ctl.dispose()
    assert ctl.disposed is True
    assert ctl.document is None
    assert sched.pending() == []
    assert ctl.handle_message(_error(doc.generation)) is False
    with pytest.raises(RuntimeError):
        ctl.update(REACT)
    assert len(seen) == 1


def test_view_contract(ctl):
    doc = ctl.update(REACT)
    view = ctl.view()
    assert view.busy is True
    assert view.showing_document is True
    assert view.as_dict() == {
        "status": "loading",
        "busy": True,
        "error": None,
        "height": "500px",
        "fullscreen": False,
        "generation": doc.generation,
    }
    ctl.handle_message(_error(doc.generation))
    assert ctl.view().showing_document is False


def test_host_panel_renders_sandboxed_frame(ctl):
    doc = ctl.update(REACT)
    html = render_host_panel(ctl.view())
    assert 'sandbox="allow-scripts allow-forms allow-modals"' in html
    assert "srcdoc=\"&lt;!DOCTYPE html&gt;" in html
    assert f'data-generation="{doc.generation}"' in html
    assert 'data-status="loading"' in html
    assert "Loading preview..." in html
    assert '"messageType": "code-preview-error"' in html
    assert "fullscreenchange" in html


def test_host_panel_shows_error_instead_of_frame(ctl):
    doc = ctl.update(REACT)
    ctl.handle_message(_error(doc.generation, "<b>bad</b>"))
    html = render_host_panel(ctl.view(), standalone=False)
    assert "&lt;b&gt;bad&lt;/b&gt;" in html
    assert "Preview Error" in html
    assert 'data-status="error"' in html
    assert not html.lstrip().startswith("<!DOCTYPE")


def test_threading_scheduler_runs_callbacks():
    import threading

    fired = threading.Event()
    handle = ThreadingScheduler().call_later(0.01, fired.set)
    assert fired.wait(2.0)
    handle.cancel()
