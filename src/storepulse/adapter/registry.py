# src/storepulse/adapter/registry.py
"""Module registry and pluggy-based module discovery.

ModuleRegistry is an explicit name -> instance map owned by one
AdapterCore. Nothing is registered globally: each tracker builds its own
registry from the enabled module names.

Discovery registers the built-in modules plus any caller plugins, then calls
``storepulse_get_modules`` hooks to build the name -> class map.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any

import pluggy
import structlog

from storepulse.adapter.hookspecs import PROJECT_NAME, StorePulseModuleSpec
from storepulse.adapter.protocols import AdapterModule
from storepulse.errors import ModuleRegistrationError

logger = structlog.get_logger(__name__)


class ModuleRegistry:
    """Ordered name -> module instance registry.

    Example:
        registry = ModuleRegistry()
        registry.register(ScrollDepthModule())
        registry.get("scroll")
    """

    def __init__(self) -> None:
        self._modules: dict[str, AdapterModule] = {}

    def register(self, module: AdapterModule) -> None:
        """Add a module instance.

        Raises:
            ModuleRegistrationError: If the name is invalid or already taken.
        """
        name = getattr(module, "name", None)
        if type(name) is not str or name == "":
            raise ModuleRegistrationError(type(module).__name__, f"Module name must be a non-empty string, got {name!r}")
        if name in self._modules:
            raise ModuleRegistrationError(name, "A module with this name is already registered")
        self._modules[name] = module

    def get(self, name: str) -> AdapterModule | None:
        return self._modules.get(name)

    @property
    def names(self) -> list[str]:
        return list(self._modules)

    def __contains__(self, name: object) -> bool:
        return name in self._modules

    def __iter__(self) -> Iterator[AdapterModule]:
        return iter(list(self._modules.values()))

    def __len__(self) -> int:
        return len(self._modules)


def _resolve_module_name(module_class: type[Any]) -> str:
    try:
        class_name = module_class.__name__
    except AttributeError as e:
        raise ModuleRegistrationError("module_plugins", f"Invalid module declaration without __name__: {module_class!r}") from e

    name = getattr(module_class, "name", None)
    if type(name) is not str or name == "":
        raise ModuleRegistrationError(class_name, f"Module class attribute name must be a non-empty string, got {name!r}")
    return name


def discover_modules(module_plugins: Iterable[Any] = ()) -> dict[str, type[AdapterModule]]:
    """Discover module classes via pluggy hooks.

    Args:
        module_plugins: Additional plugin objects implementing
            ``storepulse_get_modules``.

    Returns:
        Mapping of module name to module class, built-ins first.

    Raises:
        ModuleRegistrationError: If a plugin is invalid, a hook fails, or two
            classes claim the same name.
    """
    # Imported here: the built-in modules import the adapter package
    from storepulse.modules import BuiltinModulesPlugin

    plugin_manager = pluggy.PluginManager(PROJECT_NAME)
    plugin_manager.add_hookspecs(StorePulseModuleSpec)

    for plugin in [BuiltinModulesPlugin(), *list(module_plugins)]:
        try:
            plugin_manager.register(plugin)
            plugin_manager.check_pending()
        except (pluggy.PluginValidationError, ValueError) as e:
            # ValueError: the same plugin object or name registered twice
            if isinstance(e, pluggy.PluginValidationError):
                plugin_manager.unregister(plugin=plugin)
            raise ModuleRegistrationError("module_plugins", f"Invalid module plugin {type(plugin).__name__}: {e}") from e

    registry: dict[str, type[AdapterModule]] = {}
    for hook_impl in plugin_manager.hook.storepulse_get_modules.get_hookimpls():
        plugin_name = type(hook_impl.plugin).__name__
        try:
            module_classes = hook_impl.function()
        except Exception as e:
            raise ModuleRegistrationError(plugin_name, f"storepulse_get_modules failed: {e}") from e
        if module_classes is None or isinstance(module_classes, str | bytes):
            raise ModuleRegistrationError(
                plugin_name,
                f"storepulse_get_modules returned {type(module_classes).__name__}; expected iterable of module classes",
            )

        for module_class in module_classes:
            name = _resolve_module_name(module_class)
            if name in registry:
                raise ModuleRegistrationError(
                    name,
                    f"Duplicate module name discovered: {registry[name].__name__} and {module_class.__name__}",
                )
            registry[name] = module_class

    return registry


def build_modules(names: Iterable[str], *, module_plugins: Iterable[Any] = ()) -> list[AdapterModule]:
    """Instantiate the named modules in the given order.

    Raises:
        ModuleRegistrationError: If a name is unknown or discovery fails.
    """
    available = discover_modules(module_plugins)
    modules: list[AdapterModule] = []
    for name in names:
        module_class = available.get(name)
        if module_class is None:
            raise ModuleRegistrationError(name, f"Unknown module. Available: {sorted(available)}")
        modules.append(module_class())
    logger.debug("Modules built", modules=[m.name for m in modules])
    return modules
