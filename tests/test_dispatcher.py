"""Tests for the Canopy dispatcher and the process-wide API.

Coverage:
- plant / uproot / uproot_all, duplicates, type check
- level methods and per-sink filtering
- tag precedence through the dispatcher (proxy, per-call, context, one-shot)
- lazy messages, errors, source location
- fan-out isolation when a sink raises
- build mode gating and the non-debug-sink cache
- concurrent plant/log without torn snapshots
- runtime: configure idempotency, reset, module-level functions
"""

from __future__ import annotations

import threading

import pytest

import canopy
from canopy import context
from canopy.config import BuildMode, CanopyConfig
from canopy.dispatcher import Canopy, TaggedProxy
from canopy.levels import LogLevel
from canopy.sinks.base import Sink
from canopy.sinks.debug_sink import DebugSink


@pytest.fixture()
def dispatcher() -> Canopy:
    return Canopy()


# =============================================================================
# Registry
# =============================================================================


class TestRegistry:
    def test_plant_and_uproot_all(self, dispatcher, recorder):
        dispatcher.plant(recorder)
        dispatcher.d("Test")
        dispatcher.uproot_all()
        dispatcher.d("After uproot")
        assert recorder.messages == ["Test"]

    def test_each_planted_sink_gets_one_entry(self, dispatcher, make_recorder):
        first, second = make_recorder(), make_recorder()
        dispatcher.plant(first, second)
        dispatcher.i("once")
        assert first.messages == ["once"]
        assert second.messages == ["once"]

    def test_duplicate_plant_delivers_twice(self, dispatcher, recorder):
        dispatcher.plant(recorder, recorder)
        dispatcher.i("twice")
        assert recorder.messages == ["twice", "twice"]

    def test_forest_preserves_order(self, dispatcher, make_recorder):
        sinks = [make_recorder() for _ in range(3)]
        dispatcher.plant(*sinks)
        assert dispatcher.forest() == sinks
        assert dispatcher.tree_count == 3

    def test_forest_is_a_copy(self, dispatcher, recorder):
        dispatcher.plant(recorder)
        dispatcher.forest().clear()
        assert dispatcher.tree_count == 1

    def test_uproot_single_sink(self, dispatcher, make_recorder):
        keep, drop = make_recorder(), make_recorder()
        dispatcher.plant(keep, drop, drop)
        assert dispatcher.uproot(drop) is True
        assert dispatcher.forest() == [keep]
        assert dispatcher.uproot(drop) is False

    def test_plant_rejects_non_sinks(self, dispatcher):
        with pytest.raises(TypeError, match="Sink"):
            dispatcher.plant(object())  # type: ignore[arg-type]

    def test_no_sinks_is_noop(self, dispatcher):
        dispatcher.e("nobody listening")


# =============================================================================
# Levels
# =============================================================================


class TestLevels:
    @pytest.mark.parametrize(
        "method, level",
        [
            ("v", LogLevel.VERBOSE),
            ("d", LogLevel.DEBUG),
            ("i", LogLevel.INFO),
            ("w", LogLevel.WARNING),
            ("e", LogLevel.ERROR),
        ],
    )
    def test_level_methods(self, dispatcher, recorder, method, level):
        dispatcher.plant(recorder)
        getattr(dispatcher, method)("message")
        assert recorder.entries[0].level is level

    def test_min_level_filtering(self, dispatcher, make_recorder):
        sink = make_recorder(LogLevel.WARNING)
        dispatcher.plant(sink)

        dispatcher.v("Verbose")
        dispatcher.d("Debug")
        dispatcher.i("Info")
        dispatcher.w("Warning")
        dispatcher.e("Error")

        assert [e.level for e in sink.entries] == [LogLevel.WARNING, LogLevel.ERROR]
        assert sink.messages == ["Warning", "Error"]

    def test_filter_is_per_sink(self, dispatcher, make_recorder):
        everything, errors = make_recorder(), make_recorder(LogLevel.ERROR)
        dispatcher.plant(everything, errors)
        dispatcher.i("info")
        dispatcher.e("error")
        assert everything.messages == ["info", "error"]
        assert errors.messages == ["error"]

    def test_runtime_level(self, dispatcher, recorder):
        dispatcher.plant(recorder)
        dispatcher.log("warn", "from config")
        assert recorder.entries[0].level is LogLevel.WARNING


# =============================================================================
# Tags
# =============================================================================


class TestTags:
    def test_tag_proxy(self, dispatcher, recorder):
        dispatcher.plant(recorder)
        dispatcher.tag("Network").d("Request started")
        assert recorder.tags == ["Network"]

    def test_proxy_is_not_sticky(self, dispatcher, recorder):
        dispatcher.plant(recorder)
        dispatcher.tag("API").i("User %s logged in", "Bob")
        dispatcher.i("untagged")
        assert recorder.tags == ["API", None]
        assert recorder.messages == ["User Bob logged in", "untagged"]

    def test_proxy_type_and_empty_tag(self, dispatcher, recorder):
        proxy = dispatcher.tag("")
        assert isinstance(proxy, TaggedProxy)
        assert proxy.tag is None
        dispatcher.plant(recorder)
        proxy.w("no tag")
        assert recorder.tags == [None]

    def test_per_call_tag(self, dispatcher, recorder):
        dispatcher.plant(recorder)
        dispatcher.i("msg", tag="Call")
        assert recorder.tags == ["Call"]

    def test_sink_one_shot_beats_per_call_tag(self, dispatcher, recorder):
        dispatcher.plant(recorder)
        recorder.tag("Sink")
        dispatcher.i("msg", tag="Call")
        dispatcher.i("again", tag="Call")
        assert recorder.tags == ["Sink", "Call"]

    def test_context_fallback(self, dispatcher, recorder):
        dispatcher.plant(recorder)
        with context.scope("Screen"):
            dispatcher.i("inside")
            dispatcher.tag("Explicit").i("tagged")
        dispatcher.i("outside")
        assert recorder.tags == ["Screen", "Explicit", None]

    def test_dispatcher_does_not_touch_sink_tag_state(self, dispatcher, make_recorder):
        first, second = make_recorder(), make_recorder()
        dispatcher.plant(first, second)
        dispatcher.tag("Call").i("msg")
        assert first.explicit_tag is None
        assert second.explicit_tag is None


# =============================================================================
# Messages, errors, locations
# =============================================================================


class TestMessages:
    def test_formatted_logging(self, dispatcher, recorder):
        dispatcher.plant(recorder)
        dispatcher.d("User %s has %d items", "Alice", 5)
        assert recorder.messages == ["User Alice has 5 items"]

    def test_mismatched_arity_keeps_template(self, dispatcher, recorder):
        dispatcher.plant(recorder)
        dispatcher.d("User %s logged in", "Alice", "Extra")
        assert recorder.messages == ["User %s logged in"]

    def test_lazy_message_not_built_without_sinks(self, dispatcher):
        calls = []
        dispatcher.d(lambda: calls.append(1) or "expensive")
        assert calls == []

    def test_lazy_message_not_built_when_filtered(self, dispatcher, make_recorder):
        dispatcher.plant(make_recorder(LogLevel.ERROR))
        calls = []
        dispatcher.d(lambda: calls.append(1) or "expensive")
        assert calls == []

    def test_lazy_message_built_once_for_many_sinks(self, dispatcher, make_recorder):
        sinks = [make_recorder() for _ in range(3)]
        dispatcher.plant(*sinks)
        calls = []
        dispatcher.i(lambda: calls.append(1) or "built")
        assert calls == [1]
        assert all(s.messages == ["built"] for s in sinks)

    def test_error_passed_through(self, dispatcher, make_recorder):
        first, second = make_recorder(), make_recorder()
        dispatcher.plant(first, second)
        err = ConnectionError("refused")
        dispatcher.e("Error %s at %d", "network", 42, error=err)
        for sink in (first, second):
            assert sink.entries[0].error is err
            assert sink.messages == ["Error network at 42"]

    def test_mixed_errors(self, dispatcher, recorder):
        dispatcher.plant(recorder)
        err = KeyError("k")
        dispatcher.e("with", error=err)
        dispatcher.e("without")
        dispatcher.tag("T").e("tagged", error=err)
        assert [e.error for e in recorder.entries] == [err, None, err]
        assert recorder.tags == [None, None, "T"]

    def test_source_location_is_caller(self, dispatcher, recorder):
        dispatcher.plant(recorder)
        dispatcher.i("here")
        loc = recorder.entries[0].location
        assert loc.file == __file__
        assert loc.function == "test_source_location_is_caller"
        assert loc.line > 0

    def test_proxy_source_location_is_caller(self, dispatcher, recorder):
        dispatcher.plant(recorder)
        dispatcher.tag("T").i("here")
        assert recorder.entries[0].location.function == "test_proxy_source_location_is_caller"

    def test_high_volume(self, dispatcher, recorder):
        dispatcher.plant(recorder)
        err = RuntimeError("x")
        for n in range(1000):
            dispatcher.e("Log entry %d", n, error=err if n % 2 == 0 else None)
        assert len(recorder.entries) == 1000
        assert sum(1 for e in recorder.entries if e.error is not None) == 500


# =============================================================================
# Failure isolation
# =============================================================================


class Exploding(Sink):
    def receive(self, entry):
        raise RuntimeError("sink is broken")


class TestFailureIsolation:
    def test_raising_sink_does_not_reach_caller(self, dispatcher, recorder):
        dispatcher.plant(Exploding(), recorder)
        dispatcher.e("still delivered")
        assert recorder.messages == ["still delivered"]

    def test_raising_message_factory_does_not_reach_caller(self, dispatcher, recorder):
        dispatcher.plant(recorder)

        def broken():
            raise ValueError("cannot render")

        dispatcher.i(broken)
        assert recorder.messages == []


# =============================================================================
# Build mode
# =============================================================================


class TestBuildMode:
    def test_debug_mode_dispatches_to_debug_sinks(self, caplog):
        dispatcher = Canopy(BuildMode.DEBUG)
        dispatcher.plant(DebugSink())
        with caplog.at_level("DEBUG", logger="canopy.console"):
            dispatcher.i("visible")
        assert any("visible" in r.getMessage() for r in caplog.records)

    def test_release_mode_skips_when_only_debug_sinks(self, caplog):
        dispatcher = Canopy(BuildMode.RELEASE)
        dispatcher.plant(DebugSink())
        with caplog.at_level("DEBUG", logger="canopy.console"):
            dispatcher.i("hidden")
        assert not any("hidden" in r.getMessage() for r in caplog.records)

    def test_release_mode_dispatches_with_non_debug_sink(self, recorder):
        dispatcher = Canopy("release")
        dispatcher.plant(recorder)
        dispatcher.i("kept")
        assert recorder.messages == ["kept"]

    def test_cache_invalidated_on_plant_and_uproot(self, recorder):
        dispatcher = Canopy(BuildMode.RELEASE)
        assert dispatcher.has_non_debug_sinks() is False
        dispatcher.plant(DebugSink())
        assert dispatcher.has_non_debug_sinks() is False
        dispatcher.plant(recorder)
        assert dispatcher.has_non_debug_sinks() is True
        dispatcher.uproot_all()
        assert dispatcher.has_non_debug_sinks() is False


# =============================================================================
# Concurrency
# =============================================================================


class TestConcurrency:
    def test_concurrent_logging_from_threads(self, dispatcher, recorder):
        dispatcher.plant(recorder)

        def worker(n):
            for j in range(100):
                dispatcher.i("Thread %d message %d", n, j)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(recorder.entries) == 1000

    def test_plant_while_logging(self, dispatcher, make_recorder):
        stop = threading.Event()
        planted = [make_recorder() for _ in range(50)]

        def log_loop():
            while not stop.is_set():
                dispatcher.d("tick")

        logger_thread = threading.Thread(target=log_loop)
        logger_thread.start()
        try:
            for sink in planted:
                dispatcher.plant(sink)
        finally:
            stop.set()
            logger_thread.join()

        assert dispatcher.tree_count == 50
        assert all(set(s.messages) <= {"tick"} for s in planted)

    def test_sink_may_log_recursively(self, dispatcher, recorder):
        class Echo(Sink):
            def receive(self, entry):
                if entry.tag != "echo":
                    dispatcher.i("echo of %s", entry.message, tag="echo")

        dispatcher.plant(Echo(), recorder)
        dispatcher.i("original")
        assert recorder.messages == ["echo of original", "original"]


# =============================================================================
# Process-wide runtime
# =============================================================================


class TestRuntime:
    def test_module_level_functions(self, recorder):
        canopy.plant(recorder)
        canopy.v("v")
        canopy.d("d")
        canopy.i("i")
        canopy.w("w")
        canopy.e("e")
        canopy.tag("T").i("tagged")
        assert recorder.messages == ["v", "d", "i", "w", "e", "tagged"]
        assert recorder.tags[-1] == "T"

    def test_module_level_source_location(self, recorder):
        canopy.plant(recorder)
        canopy.i("where")
        assert recorder.entries[0].location.function == "test_module_level_source_location"

    def test_uproot_all_module_level(self, recorder):
        canopy.plant(recorder)
        canopy.uproot_all()
        canopy.i("dropped")
        assert recorder.entries == []
        assert canopy.forest() == []

    def test_configure_idempotent(self):
        cfg = CanopyConfig(log_formatter="stdlib", log_destination="stderr")
        first = canopy.configure(cfg)
        second = canopy.configure(cfg)
        assert first is second
        assert canopy.is_configured()

    def test_configure_keeps_planted_sinks(self, recorder):
        canopy.plant(recorder)
        canopy.configure(CanopyConfig(log_formatter="stdlib", build_mode="release"))
        assert canopy.get_canopy().build_mode is BuildMode.RELEASE
        canopy.i("after configure")
        assert recorder.messages == ["after configure"]

    def test_reset_clears_state(self, recorder):
        canopy.configure(CanopyConfig(log_formatter="stdlib"))
        canopy.plant(recorder)
        before = canopy.get_canopy()
        canopy.reset()
        assert not canopy.is_configured()
        assert canopy.get_canopy() is not before
        assert canopy.forest() == []

    @pytest.mark.parametrize(
        "key, value",
        [("CANOPY_BUILD_MODE", "staging"), ("CANOPY_CRASH_BUFFER_CAPACITY", "0")],
    )
    def test_bad_env_does_not_break_first_log_call(self, recorder, monkeypatch, caplog, key, value):
        monkeypatch.setenv(key, value)
        with caplog.at_level("WARNING", logger="canopy.runtime"):
            canopy.plant(recorder)
            canopy.i("still logged")

        assert recorder.messages == ["still logged"]
        assert canopy.get_canopy().build_mode is BuildMode.DEBUG
        assert any(r.getMessage() == "runtime.invalid_env_config" for r in caplog.records)

    def test_valid_env_build_mode_used_lazily(self, recorder, monkeypatch):
        monkeypatch.setenv("CANOPY_BUILD_MODE", "release")
        canopy.plant(recorder)
        assert canopy.get_canopy().build_mode is BuildMode.RELEASE
