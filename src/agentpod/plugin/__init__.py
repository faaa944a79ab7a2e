"""Plugin system for agentpod.

Plugins extend agentpod with additional container engines. Built on pluggy
(pytest's plugin framework) for robust, type-safe plugin management.

Usage:
    from agentpod.plugin import get_plugin_manager

    pm = get_plugin_manager(settings.plugins)
    engines = pm.hook.agentpod_container_engine()
"""

from __future__ import annotations

import importlib
from collections.abc import Mapping

import pluggy

from agentpod.config import PluginConfig
from agentpod.logger import logger
from agentpod.plugin.hookspecs import AgentpodSpec

__all__ = [
    "get_plugin_manager",
    "hookimpl",
]

hookimpl = pluggy.HookimplMarker("agentpod")

# Static registry of built-in plugins.
# Each entry: (module_path, class_name, config_key)
# config_key is checked against [plugins.<key>].enabled in config.toml.
_BUILTIN_PLUGIN_SPECS: list[tuple[str, str, str]] = [
    ("agentpod.engine.plugins.docker_engine", "DockerEnginePlugin", "docker-engine"),
    ("agentpod.engine.plugins.podman_engine", "PodmanEnginePlugin", "podman-engine"),
]


def get_plugin_manager(
    plugins: Mapping[str, PluginConfig] | None = None,
) -> pluggy.PluginManager:
    """Create and configure the plugin manager.

    Registers built-in plugins from the static registry, then third-party
    plugins from the ``agentpod`` entry point group.
    """
    pm = pluggy.PluginManager("agentpod")
    pm.add_hookspecs(AgentpodSpec)
    plugins = plugins or {}

    for module_path, class_name, config_key in _BUILTIN_PLUGIN_SPECS:
        plugin_cfg = plugins.get(config_key)
        if plugin_cfg is not None and not plugin_cfg.enabled:
            logger.info("Plugin disabled via config", plugin=config_key)
            continue

        mod = importlib.import_module(module_path)
        cls = getattr(mod, class_name)
        pm.register(cls(), name=f"builtin-{config_key}")
        logger.debug("Registered built-in plugin", name=config_key)

    discovered = pm.load_setuptools_entrypoints("agentpod")
    if discovered:
        logger.info("Discovered third-party plugins", count=discovered)

    # Entrypoint loaders can hand back plugin classes instead of instances,
    # which then fail hook invocation with missing `self`.
    for plugin in list(pm.get_plugins()):
        if isinstance(plugin, type):
            plugin_name = pm.get_name(plugin) or plugin.__name__
            pm.unregister(plugin=plugin)
            logger.warning("Unregistered invalid class-based plugin object", plugin=plugin_name)

    return pm
