"""Tests for the config file watcher."""

import asyncio

import pytest
import yaml

from topix.server.services.config_manager import ConfigManager
from topix.server.services.config_watcher import ConfigWatcher


class Recorder:
    """Change handler collecting applied documents."""

    def __init__(self, fail=False):
        self.documents = []
        self.fail = fail

    async def __call__(self, document):
        if self.fail:
            raise RuntimeError("apply failed")
        self.documents.append(document)


@pytest.fixture
def manager(config_file):
    return ConfigManager(config_file)


def make_watcher(manager, handler, **kwargs):
    kwargs.setdefault("debounce_ms", 50)
    kwargs.setdefault("force_polling", True)
    kwargs.setdefault("poll_delay_ms", 50)
    return ConfigWatcher(manager, on_change=handler, **kwargs)


async def wait_for(predicate, timeout=10.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            return False
        await asyncio.sleep(0.05)
    return True


class TestProcessChange:
    """Test cases for a single reload."""

    def test_valid_change_reaches_handler(self, manager, config_file):
        handler = Recorder()
        config_file.write_text(yaml.safe_dump({"llm": {"provider": "none"}, "plugins": {"alpha": {"enabled": False}}}))

        assert asyncio.run(make_watcher(manager, handler).process_change())
        assert len(handler.documents) == 1
        assert not handler.documents[0].plugins["alpha"].enabled

    def test_invalid_change_is_rejected(self, manager, config_file):
        handler = Recorder()
        config_file.write_text(yaml.safe_dump({"plugins": {"alpha": {"importance": {"base_weight": 10}}}}))

        assert not asyncio.run(make_watcher(manager, handler).process_change())
        assert handler.documents == []
        assert manager.get_plugin_config("alpha").enabled

    def test_malformed_yaml_is_rejected(self, manager, config_file):
        handler = Recorder()
        config_file.write_text("plugins: {alpha: [")

        assert not asyncio.run(make_watcher(manager, handler).process_change())
        assert handler.documents == []

    def test_deleted_file_keeps_configuration(self, manager, config_file):
        handler = Recorder()
        config_file.unlink()

        assert not asyncio.run(make_watcher(manager, handler).process_change())
        assert "alpha" in manager.get_plugin_configs()

    def test_handler_failure_is_contained(self, manager):
        assert not asyncio.run(make_watcher(manager, Recorder(fail=True)).process_change())


class TestWatching:
    """Test cases for the watch loop."""

    def test_start_and_stop(self, manager):
        async def scenario():
            watcher = make_watcher(manager, Recorder())
            await watcher.start()
            watching = watcher.is_watching()
            await watcher.stop()
            return watching, watcher.is_watching()

        assert asyncio.run(scenario()) == (True, False)

    def test_stop_without_start(self, manager):
        asyncio.run(make_watcher(manager, Recorder()).stop())

    def test_file_edit_is_applied(self, manager, config_file):
        handler = Recorder()

        async def scenario():
            watcher = make_watcher(manager, handler)
            await watcher.start()
            try:
                await asyncio.sleep(0.3)
                config_file.write_text(
                    yaml.safe_dump(
                        {"llm": {"provider": "none"}, "plugins": {"alpha": {"enabled": False, "schedule": "*/5 * * * *"}}}
                    )
                )
                return await wait_for(lambda: handler.documents)
            finally:
                await watcher.stop()

        assert asyncio.run(scenario())
        assert not handler.documents[-1].plugins["alpha"].enabled

    def test_burst_of_writes_applies_final_state(self, manager, config_file):
        handler = Recorder()

        async def scenario():
            watcher = make_watcher(manager, handler, debounce_ms=300)
            await watcher.start()
            try:
                await asyncio.sleep(0.3)
                for schedule in ("0 1 * * *", "0 2 * * *", "0 3 * * *"):
                    config_file.write_text(
                        yaml.safe_dump({"llm": {"provider": "none"}, "plugins": {"alpha": {"schedule": schedule}}})
                    )
                    await asyncio.sleep(0.02)
                await wait_for(lambda: handler.documents)
                await asyncio.sleep(0.5)
            finally:
                await watcher.stop()

        asyncio.run(scenario())
        assert handler.documents
        assert handler.documents[-1].plugins["alpha"].schedule == "0 3 * * *"

    def test_unrelated_files_are_ignored(self, manager, config_file):
        handler = Recorder()

        async def scenario():
            watcher = make_watcher(manager, handler)
            await watcher.start()
            try:
                await asyncio.sleep(0.3)
                (config_file.parent / "notes.txt").write_text("hello")
                await asyncio.sleep(0.6)
            finally:
                await watcher.stop()

        asyncio.run(scenario())
        assert handler.documents == []

    def test_edit_right_after_start_is_applied(self, manager, config_file):
        """start() returns only once the first snapshot exists, so an immediate edit is seen."""
        handler = Recorder()

        async def scenario():
            # Keep the edit's mtime distinct from the fixture's write
            await asyncio.sleep(0.05)
            watcher = make_watcher(manager, handler)
            await watcher.start()
            try:
                config_file.write_text(
                    yaml.safe_dump({"llm": {"provider": "none"}, "plugins": {"alpha": {"schedule": "0 4 * * *"}}})
                )
                return await wait_for(lambda: handler.documents)
            finally:
                await watcher.stop()

        assert asyncio.run(scenario())
        assert handler.documents[-1].plugins["alpha"].schedule == "0 4 * * *"

    def test_edit_during_startup_is_applied(self, manager, config_file):
        """A change between start() and the first snapshot is caught by the startup check."""
        handler = Recorder()

        async def scenario():
            watcher = make_watcher(manager, handler)
            original = watcher._file_state
            edited = []

            def state_then_edit():
                state = original()
                if not edited:
                    edited.append(True)
                    config_file.write_text(
                        yaml.safe_dump({"llm": {"provider": "none"}, "plugins": {"alpha": {"enabled": False}}})
                    )
                return state

            watcher._file_state = state_then_edit
            await watcher.start()
            try:
                return await wait_for(lambda: handler.documents)
            finally:
                await watcher.stop()

        assert asyncio.run(scenario())
        assert not handler.documents[-1].plugins["alpha"].enabled
