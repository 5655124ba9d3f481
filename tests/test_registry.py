"""
Tests for the application registry: registration, arbitration and
reconciliation with settings and descriptors.
"""

import json
import uuid

import pytest

from oxide_supervisor.errors import ConfigurationError
from oxide_supervisor.models.application import SYSTEM_FLAG, ApplicationState, ApplicationType
from oxide_supervisor.models.events import EventType
from oxide_supervisor.registry import NO_PATH, PATH_NAMESPACE, application_path


def foreground_count(registry):
    return sum(1 for app in registry.list_applications() if app.state == ApplicationState.IN_FOREGROUND)


class TestPaths:
    def test_path_is_deterministic(self, registry):
        expected = f"/codes/eeems/oxide1/apps/{uuid.uuid5(PATH_NAMESPACE, 'reader').hex}"
        assert registry.get_path("reader") == expected
        assert application_path("/codes/eeems/oxide1", "reader") == expected

    def test_distinct_names_distinct_paths(self, registry):
        assert registry.get_path("reader") != registry.get_path("clock")


class TestRegistration:
    """register_application / unregister_application."""

    def test_register_twice_same_path(self, registry, make_executable, recorder):
        """The same name always maps to one Application."""
        bin_path = str(make_executable("reader"))
        first = registry.register_application({"name": "reader", "bin": bin_path})
        second = registry.register_application({"name": "reader", "bin": bin_path, "type": 2})

        assert first == second != NO_PATH
        assert len(registry.list_applications()) == 1
        assert registry.get_application(first).type == ApplicationType.FOREGROUND
        assert len(recorder.of_type(EventType.APPLICATION_REGISTERED)) == 1

    @pytest.mark.parametrize("properties", [
        {"bin": "/bin/sh"},
        {"name": "", "bin": "/bin/sh"},
        {"name": "x"},
        {"name": "x", "bin": "/bin/sh", "type": 7},
        {"name": "x", "bin": "/bin/sh", "type": "sideways"},
        {"name": "x", "bin": "/definitely/not/here"},
    ])
    def test_invalid_registration(self, registry, recorder, properties):
        assert registry.register_application(properties) == NO_PATH
        assert registry.list_applications() == []
        assert recorder.events == []

    def test_registration_is_persisted_and_exported(self, registry, make_executable, config, bus):
        bin_path = str(make_executable("reader"))
        path = registry.register_application({"name": "reader", "bin": bin_path})

        data = json.loads(config.settings_path.read_text())
        assert [r["name"] for r in data["applications"]] == ["reader"]
        assert data["applications"][0]["displayName"] == "reader"
        assert bus.is_exported(path)

    def test_unregister_unknown_path_succeeds(self, registry):
        assert registry.unregister_application("/codes/eeems/oxide1/apps/nothing")

    def test_unregister_system_application_refused(self, registry, register, recorder):
        app = register("codes.eeems.erode", flags=[SYSTEM_FLAG])
        recorder.clear()

        assert not registry.unregister_application(app.path)
        assert registry.get_application(app.path) is app
        assert recorder.events == []

    def test_unregister_user_application(self, registry, register, recorder, bus, config):
        app = register("reader")
        app.launch()

        assert registry.unregister_application(app.path)
        assert registry.get_application(app.path) is None
        assert not bus.is_exported(app.path)
        assert not app.is_process_alive()
        assert [e.path for e in recorder.of_type(EventType.APPLICATION_UNREGISTERED)] == [app.path]
        assert json.loads(config.settings_path.read_text())["applications"] == []


class TestArbitration:
    """Foreground slot ownership."""

    def test_reader_then_clock(self, registry, register, wait_inactive):
        """A Foreground app loses the foreground entirely when another launches."""
        reader = register("reader", ApplicationType.FOREGROUND)
        reader.launch()
        assert reader.state == ApplicationState.IN_FOREGROUND

        clock = register("clock", ApplicationType.BACKGROUNDABLE)
        clock.launch()

        assert reader.state == ApplicationState.INACTIVE
        assert clock.state == ApplicationState.IN_FOREGROUND
        assert registry.current_application == clock.path
        assert wait_inactive(reader)

    def test_backgroundable_keeps_running(self, registry, register, loop):
        clock = register("clock", ApplicationType.BACKGROUNDABLE)
        reader = register("reader")
        clock.launch()
        reader.launch()

        assert clock.state == ApplicationState.IN_BACKGROUND
        assert clock.is_process_alive()
        assert registry.running_applications == {"clock": clock.path, "reader": reader.path}

        clock.launch()
        assert clock.state == ApplicationState.IN_FOREGROUND
        assert reader.state == ApplicationState.INACTIVE

    def test_at_most_one_foreground(self, registry, register):
        apps = [
            register("a", ApplicationType.FOREGROUND),
            register("b", ApplicationType.BACKGROUNDABLE),
            register("c", ApplicationType.BACKGROUND),
            register("d", ApplicationType.BACKGROUNDABLE),
        ]
        for app in apps + apps[::-1] + [apps[1], apps[3], apps[1]]:
            app.launch()
            assert foreground_count(registry) == 1
            assert registry.foreground_application() is app

    def test_pause_all_freezes_backgroundable(self, registry, register, wait_inactive):
        clock = register("clock", ApplicationType.BACKGROUNDABLE)
        reader = register("reader")
        clock.launch()
        clock.pause()
        reader.launch()

        registry.pause_all()

        assert clock.state == ApplicationState.PAUSED
        assert clock.is_process_alive()
        assert registry.paused_applications == {"clock": clock.path}
        assert wait_inactive(reader)

    def test_resume_frozen_returns_to_background(self, registry, register):
        clock = register("clock", ApplicationType.BACKGROUNDABLE)
        home = register("home", ApplicationType.BACKGROUNDABLE)
        clock.launch()
        home.launch()
        registry.pause_all()
        assert registry.paused_applications == {"clock": clock.path, "home": home.path}

        home.launch()
        registry.resume_frozen()

        assert home.state == ApplicationState.IN_FOREGROUND
        assert clock.state == ApplicationState.IN_BACKGROUND
        assert clock.is_process_alive()
        assert registry.paused_applications == {}

    def test_resume_frozen_only_once(self, registry, register):
        """Applications paused after the thaw stay paused."""
        clock = register("clock", ApplicationType.BACKGROUNDABLE)
        clock.launch()
        registry.pause_all()
        registry.resume_frozen()
        assert clock.state == ApplicationState.IN_BACKGROUND

        clock.pause(stopping=True)
        registry.resume_frozen()
        assert clock.state == ApplicationState.PAUSED

    def test_stop_paused_application(self, registry, register, wait_inactive):
        clock = register("clock", ApplicationType.BACKGROUNDABLE)
        clock.launch()
        registry.pause_all()
        clock.stop()
        assert wait_inactive(clock)


class TestStartupApplication:
    """resume_if_none, left_held and home_held."""

    def test_resume_if_none_launches_startup(self, registry, register):
        home = register("home", ApplicationType.BACKGROUNDABLE)
        assert registry.set_startup_application(home.path)

        registry.resume_if_none()

        assert home.state == ApplicationState.IN_FOREGROUND

    def test_resume_if_none_noop_with_foreground(self, registry, register):
        home = register("home", ApplicationType.BACKGROUNDABLE)
        reader = register("reader")
        registry.set_startup_application(home.path)
        reader.launch()

        registry.resume_if_none()

        assert home.state == ApplicationState.INACTIVE
        assert reader.state == ApplicationState.IN_FOREGROUND

    def test_resume_if_none_noop_while_stopping(self, registry, register):
        home = register("home", ApplicationType.BACKGROUNDABLE)
        registry.set_startup_application(home.path)
        registry._stopping = True

        registry.resume_if_none()

        assert home.state == ApplicationState.INACTIVE

    def test_resume_if_none_without_startup(self, registry, register):
        register("reader")
        registry.resume_if_none()
        assert registry.current_application == NO_PATH

    def test_unknown_startup_path_ignored(self, registry, register):
        home = register("home")
        registry.set_startup_application(home.path)
        assert not registry.set_startup_application("/nowhere")
        assert registry.startup_application == home.path

    def test_startup_reference_cleared_by_unregister(self, registry, register):
        home = register("home")
        registry.set_startup_application(home.path)
        registry.unregister_application(home.path)
        assert registry.startup_application == NO_PATH

    def test_startup_persisted_by_name(self, registry, register, config):
        home = register("home")
        registry.set_startup_application(home.path)
        assert json.loads(config.settings_path.read_text())["startupApplication"] == "home"

    def test_crash_returns_to_startup(self, registry, register, loop, recorder):
        """An unexpected foreground exit brings the startup app back."""
        home = register("home", ApplicationType.BACKGROUNDABLE)
        registry.set_startup_application(home.path)
        registry.resume_if_none()

        crash = register("crash", body="#!/bin/sh\nexit 3\n")
        crash.launch()
        assert home.state == ApplicationState.IN_BACKGROUND

        assert loop.wait_for(lambda: home.state == ApplicationState.IN_FOREGROUND)
        assert crash.state == ApplicationState.INACTIVE
        exits = recorder.of_type(EventType.APPLICATION_EXITED)
        assert [(e.path, e.exit_code) for e in exits] == [(crash.path, 3)]

    def test_left_held(self, registry, register):
        home = register("home", ApplicationType.BACKGROUNDABLE)
        reader = register("reader")
        registry.set_startup_application(home.path)
        reader.launch()

        registry.left_held()
        assert home.state == ApplicationState.IN_FOREGROUND

        registry.left_held()
        assert home.state == ApplicationState.IN_FOREGROUND

    def test_left_held_without_startup(self, registry, register):
        reader = register("reader")
        reader.launch()
        registry.left_held()
        assert reader.state == ApplicationState.IN_FOREGROUND

    def test_home_held(self, registry, register):
        erode = register("codes.eeems.erode", ApplicationType.BACKGROUND)
        reader = register("reader")
        reader.launch()

        registry.home_held()

        assert erode.state == ApplicationState.IN_FOREGROUND
        assert reader.state == ApplicationState.INACTIVE

    def test_home_held_without_process_manager(self, registry, register):
        reader = register("reader")
        reader.launch()
        registry.home_held()
        assert reader.state == ApplicationState.IN_FOREGROUND


class TestReconciliation:
    """reload() against the settings store and descriptor directory."""

    def test_descriptor_scenario(self, registry, config, make_executable, recorder):
        bin_path = make_executable("erode")
        config.descriptor_dir.mkdir()
        descriptor = config.descriptor_dir / "codes.eeems.erode.oxide"
        descriptor.write_text(f"type: background\nbin: {bin_path}\n")

        registry.reload()

        app = registry.get_application_by_name("codes.eeems.erode")
        assert app is not None
        assert SYSTEM_FLAG in app.config.flags
        assert app.type == ApplicationType.BACKGROUND

        descriptor.unlink()
        registry.reload()

        assert registry.get_application_by_name("codes.eeems.erode") is None
        assert [e.path for e in recorder.of_type(EventType.APPLICATION_UNREGISTERED)] == [app.path]

    def test_reload_is_idempotent(self, registry, config, register, make_executable, recorder):
        """A second reload writes nothing and emits nothing."""
        register("reader")
        config.descriptor_dir.mkdir()
        bin_path = make_executable("clock")
        (config.descriptor_dir / "clock.oxide").write_text(
            f"type: backgroundable\nbin: {bin_path}\nevents:\n  pause: /bin/true\n"
        )

        registry.reload()
        writes = registry.settings.write_count
        events = len(recorder.events)

        registry.reload()

        assert registry.settings.write_count == writes
        assert len(recorder.events) == events

    def test_invalid_settings_records_skipped(self, registry, config, make_executable, tmp_path):
        bin_path = str(make_executable("reader"))
        config.settings_path.parent.mkdir(parents=True)
        config.settings_path.write_text(json.dumps({
            "version": 1,
            "applications": [
                {"bin": bin_path},
                {"name": "nobin"},
                {"name": "badtype", "bin": bin_path, "type": 7},
                {"name": "gone", "bin": str(tmp_path / "missing")},
                {"name": ["odd"], "bin": bin_path},
                {"name": "reader", "bin": bin_path, "environment": ["x"], "flags": "abc"},
                "not a record",
            ],
        }))

        registry.reload()

        assert registry.applications == {"reader": registry.get_path("reader")}
        reader = registry.get_application_by_name("reader")
        assert reader.config.environment == {}
        assert reader.config.flags == []

    def test_settings_authoritative_for_user_apps(self, registry, register, config):
        register("reader")
        keep = register("clock")
        data = json.loads(config.settings_path.read_text())
        data["applications"] = [r for r in data["applications"] if r["name"] == "clock"]
        config.settings_path.write_text(json.dumps(data))

        registry.reload()

        assert registry.get_application_by_name("reader") is None
        assert registry.get_application_by_name("clock") is keep

    def test_settings_changes_update_in_place(self, registry, register, config, recorder):
        app = register("reader")
        data = json.loads(config.settings_path.read_text())
        data["applications"][0]["displayName"] = "Reader"
        config.settings_path.write_text(json.dumps(data))
        recorder.clear()

        registry.reload()

        assert registry.get_application_by_name("reader") is app
        assert app.config.display_name == "Reader"
        assert recorder.events == []

    def test_descriptor_adopts_user_app(self, registry, register, config):
        app = register("clock")
        config.descriptor_dir.mkdir()
        (config.descriptor_dir / "clock.oxide").write_text(f"bin: {app.config.bin}\ntype: backgroundable\n")

        registry.reload()

        assert registry.get_application_by_name("clock") is app
        assert app.is_system
        assert app.type == ApplicationType.BACKGROUNDABLE

    def test_descriptor_with_missing_binary_is_kept(self, registry, config, make_executable):
        bin_path = make_executable("clock")
        config.descriptor_dir.mkdir()
        (config.descriptor_dir / "clock.oxide").write_text(f"bin: {bin_path}\n")
        registry.reload()

        bin_path.unlink()
        registry.reload()

        assert registry.get_application_by_name("clock") is not None

    def test_bad_descriptor_skipped(self, registry, config, make_executable):
        bin_path = make_executable("good")
        config.descriptor_dir.mkdir()
        (config.descriptor_dir / "bad.oxide").write_text("bin: [unterminated\n")
        (config.descriptor_dir / "good.oxide").write_text(f"bin: {bin_path}\ntype: sideways\n")

        registry.reload()

        assert registry.applications == {"good": registry.get_path("good")}
        assert registry.get_application_by_name("good").type == ApplicationType.FOREGROUND

    def test_reconcile_writes_once(self, registry, config, make_executable):
        config.descriptor_dir.mkdir()
        for name in ("a", "b", "c"):
            bin_path = make_executable(name)
            (config.descriptor_dir / f"{name}.oxide").write_text(f"bin: {bin_path}\n")

        registry.reload()

        assert registry.settings.write_count == 1
        names = [r["name"] for r in json.loads(config.settings_path.read_text())["applications"]]
        assert names == ["a", "b", "c"]


class TestLifecycle:
    """startup() and shutdown()."""

    def test_startup_restores_and_launches(self, registry, config, make_executable, loop, bus):
        bin_path = make_executable("home")
        config.settings_path.parent.mkdir(parents=True)
        config.settings_path.write_text(json.dumps({
            "version": 1,
            "startupApplication": "home",
            "applications": [{"name": "home", "bin": str(bin_path), "type": 2}],
        }))

        registry.startup()

        home = registry.get_application_by_name("home")
        assert home.state == ApplicationState.IN_FOREGROUND
        assert registry.startup_application == home.path
        assert bus.is_exported(config.apps_path)
        assert bus.is_exported(home.path)

    def test_startup_uses_configured_default(self, registry, config, register):
        home = register("home")
        config.default_startup_application = "home"

        registry.startup()

        assert home.state == ApplicationState.IN_FOREGROUND

    def test_unknown_stored_startup_falls_back(self, registry, config, make_executable):
        bin_path = make_executable("home")
        config.settings_path.parent.mkdir(parents=True)
        config.settings_path.write_text(json.dumps({
            "version": 1,
            "startupApplication": "ghost",
            "applications": [{"name": "home", "bin": str(bin_path)}],
        }))
        config.default_startup_application = "home"

        registry.startup()

        home = registry.get_application_by_name("home")
        assert home.state == ApplicationState.IN_FOREGROUND
        assert registry.startup_application == home.path

    def test_startup_rejects_future_settings(self, registry, config):
        config.settings_path.parent.mkdir(parents=True)
        config.settings_path.write_text(json.dumps({"version": 99, "applications": []}))

        with pytest.raises(ConfigurationError):
            registry.startup()

    def test_shutdown_stops_everything(self, registry, register, bus, recorder):
        clock = register("clock", ApplicationType.BACKGROUNDABLE)
        reader = register("reader")
        clock.launch()
        reader.launch()

        registry.shutdown()

        assert registry.stopping
        assert registry.list_applications() == []
        assert not clock.is_process_alive()
        assert not reader.is_process_alive()
        assert not bus.is_exported(clock.path)
        assert recorder.of_type(EventType.APPLICATION_UNREGISTERED) == []

    def test_set_enabled(self, registry, register, bus, config):
        app = register("reader")
        registry.set_enabled(False)
        assert bus.paths() == []
        registry.set_enabled(True)
        assert bus.paths() == sorted([config.apps_path, app.path])

    def test_stats(self, registry, register):
        register("reader").launch()
        stats = registry.get_stats()
        assert stats["applications"] == 1
        assert stats["states"] == {"inForeground": 1}
