# tests/unit/adapter/test_registry.py
"""Tests for the module registry and pluggy discovery."""

from typing import Any, ClassVar

import pytest

from storepulse.adapter.hookspecs import hookimpl
from storepulse.adapter.registry import ModuleRegistry, build_modules, discover_modules
from storepulse.config import DEFAULT_MODULES
from storepulse.errors import ModuleRegistrationError
from storepulse.modules import ScrollDepthModule


class WishlistModule:
    name: ClassVar[str] = "wishlist"

    def init(self, core: Any) -> None:
        pass


class ImpostorScrollModule:
    name: ClassVar[str] = "scroll"

    def init(self, core: Any) -> None:
        pass


class NamelessModule:
    def init(self, core: Any) -> None:
        pass


class ModulesPlugin:
    def __init__(self, *classes: type) -> None:
        self._classes = list(classes)

    @hookimpl
    def storepulse_get_modules(self) -> list[type]:
        return self._classes


class ReturnsStringPlugin:
    @hookimpl
    def storepulse_get_modules(self) -> Any:
        return "wishlist"


class FailingPlugin:
    @hookimpl
    def storepulse_get_modules(self) -> list[type]:
        raise RuntimeError("plugin exploded")


class BadSignaturePlugin:
    @hookimpl
    def storepulse_get_modules(self, unexpected: int) -> list[type]:
        return []


class TestModuleRegistry:
    """Explicit per-core registry."""

    def test_register_and_get(self) -> None:
        registry = ModuleRegistry()
        module = ScrollDepthModule()

        registry.register(module)

        assert registry.get("scroll") is module
        assert "scroll" in registry
        assert len(registry) == 1
        assert list(registry) == [module]

    def test_duplicate_name_rejected(self) -> None:
        registry = ModuleRegistry()
        registry.register(ScrollDepthModule())

        with pytest.raises(ModuleRegistrationError) as exc_info:
            registry.register(ImpostorScrollModule())

        assert exc_info.value.module_name == "scroll"

    def test_missing_name_rejected(self) -> None:
        with pytest.raises(ModuleRegistrationError, match="non-empty string"):
            ModuleRegistry().register(NamelessModule())  # type: ignore[arg-type]

    def test_unknown_name_is_none(self) -> None:
        assert ModuleRegistry().get("missing") is None


class TestDiscovery:
    """pluggy hook discovery."""

    def test_builtins_discovered(self) -> None:
        available = discover_modules()
        assert set(DEFAULT_MODULES) <= set(available)

    def test_plugin_modules_added(self) -> None:
        available = discover_modules([ModulesPlugin(WishlistModule)])
        assert available["wishlist"] is WishlistModule

    def test_duplicate_plugin_name_rejected(self) -> None:
        with pytest.raises(ModuleRegistrationError, match="Duplicate module name"):
            discover_modules([ModulesPlugin(ImpostorScrollModule)])

    def test_nameless_class_rejected(self) -> None:
        with pytest.raises(ModuleRegistrationError, match="name must be a non-empty string"):
            discover_modules([ModulesPlugin(NamelessModule)])

    @pytest.mark.parametrize("plugin", [ReturnsStringPlugin(), FailingPlugin(), BadSignaturePlugin()])
    def test_invalid_plugins_rejected(self, plugin: Any) -> None:
        with pytest.raises(ModuleRegistrationError):
            discover_modules([plugin])

    def test_same_plugin_twice_rejected(self) -> None:
        plugin = ModulesPlugin(WishlistModule)
        with pytest.raises(ModuleRegistrationError, match="Invalid module plugin"):
            discover_modules([plugin, plugin])


class TestBuildModules:
    """Instantiation from enabled names."""

    def test_builds_in_requested_order(self) -> None:
        modules = build_modules(["time", "scroll"])
        assert [m.name for m in modules] == ["time", "scroll"]

    def test_fresh_instances(self) -> None:
        first, second = build_modules(["scroll"]), build_modules(["scroll"])
        assert first[0] is not second[0]

    def test_unknown_name(self) -> None:
        with pytest.raises(ModuleRegistrationError, match="Unknown module"):
            build_modules(["teleport"])

    def test_plugin_module_buildable(self) -> None:
        [module] = build_modules(["wishlist"], module_plugins=[ModulesPlugin(WishlistModule)])
        assert isinstance(module, WishlistModule)
