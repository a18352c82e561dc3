"""Tests for plugin discovery and registration."""

from pathlib import Path

import pytest

from topix.server.plugins.registry import PluginRegistry

USER_PLUGIN = '''
from topix.server.plugins.base import BasePlugin
from topix.server.plugins.types import Headline, PluginDescriptor


class {cls}(BasePlugin):
    descriptor = PluginDescriptor(id="{plugin_id}", name="{cls}", version="0.1.0", author="me")

    async def fetch(self, context):
        return [Headline.create(self.descriptor.id, "hi")]
'''


@pytest.fixture
def plugins_dir(tmp_path: Path) -> Path:
    path = tmp_path / "plugins"
    path.mkdir()
    return path


def write_plugin(plugins_dir: Path, filename: str, plugin_id: str, cls: str = "UserPlugin") -> None:
    (plugins_dir / filename).write_text(USER_PLUGIN.format(plugin_id=plugin_id, cls=cls))


class TestRegister:
    """Test cases for registering plugin instances."""

    def test_register_and_lookup(self, registry, make_plugin):
        plugin = make_plugin("alpha")

        assert registry.register(plugin)
        assert registry.get("alpha") is plugin
        assert "alpha" in registry
        assert len(registry) == 1
        assert registry.ids() == ["alpha"]

    def test_duplicate_id_rejected(self, registry, make_plugin):
        first = make_plugin("alpha")
        registry.register(first)

        assert not registry.register(make_plugin("alpha"))
        assert registry.get("alpha") is first

    def test_contract_violation_rejected(self, registry):
        class NotAPlugin:
            pass

        assert not registry.register(NotAPlugin())
        assert len(registry) == 0

    def test_unknown_id(self, registry):
        assert registry.get("missing") is None
        assert "missing" not in registry


class TestDiscover:
    """Test cases for plugin discovery."""

    def test_builtin_weather_plugin_is_discovered(self):
        registry = PluginRegistry(plugins_dir=None)
        registry.discover()

        assert "weather" in registry
        assert registry.is_builtin("weather")

    def test_user_plugin_is_discovered(self, plugins_dir):
        write_plugin(plugins_dir, "news.py", "news")
        registry = PluginRegistry(plugins_dir=plugins_dir, builtin_package=None)

        assert registry.discover() == 1
        assert "news" in registry
        assert not registry.is_builtin("news")

    def test_user_plugin_cannot_shadow_builtin(self, plugins_dir):
        write_plugin(plugins_dir, "fake_weather.py", "weather", cls="FakeWeather")
        registry = PluginRegistry(plugins_dir=plugins_dir)
        registry.discover()

        assert type(registry.get("weather")).__name__ == "WeatherPlugin"

    def test_broken_module_does_not_abort_discovery(self, plugins_dir):
        (plugins_dir / "broken.py").write_text("raise RuntimeError('import failure')\n")
        write_plugin(plugins_dir, "good.py", "good")
        registry = PluginRegistry(plugins_dir=plugins_dir, builtin_package=None)

        assert registry.discover() == 1
        assert "good" in registry

    def test_abstract_and_private_files_skipped(self, plugins_dir):
        (plugins_dir / "abstract.py").write_text(
            "from topix.server.plugins.base import BasePlugin\n"
            "from topix.server.plugins.types import PluginDescriptor\n\n"
            "class Abstract(BasePlugin):\n"
            "    descriptor = PluginDescriptor(id='abstract', name='A', version='1', author='x')\n"
        )
        write_plugin(plugins_dir, "_private.py", "private")
        registry = PluginRegistry(plugins_dir=plugins_dir, builtin_package=None)

        assert registry.discover() == 0
        assert len(registry) == 0

    def test_missing_plugins_dir(self, tmp_path):
        registry = PluginRegistry(plugins_dir=tmp_path / "nope", builtin_package=None)
        assert registry.discover() == 0

    def test_duplicate_user_ids_keep_first(self, plugins_dir):
        write_plugin(plugins_dir, "a_first.py", "dup", cls="First")
        write_plugin(plugins_dir, "b_second.py", "dup", cls="Second")
        registry = PluginRegistry(plugins_dir=plugins_dir, builtin_package=None)

        assert registry.discover() == 1
        assert type(registry.get("dup")).__name__ == "First"
