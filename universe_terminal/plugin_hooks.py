# universe_terminal/plugin_hooks.py

from enum import Enum, auto
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
import logging
import inspect

from universe_terminal.models import CommandResultEvent

logger = logging.getLogger(__name__)


class HookPoint(Enum):
    """Points in the command pipeline where registered hooks run."""
    BEFORE_COMMAND = auto()
    AFTER_COMMAND = auto()
    ON_OUTPUT = auto()
    ON_ERROR = auto()


# Method name a plugin object implements for each hook point.
PLUGIN_METHODS = {
    HookPoint.BEFORE_COMMAND: "before_command",
    HookPoint.AFTER_COMMAND: "after_command",
    HookPoint.ON_OUTPUT: "on_output",
    HookPoint.ON_ERROR: "on_error",
}


@dataclass
class HookContext:
    """What a hook sees about the command being processed."""
    hook_point: HookPoint
    command: str
    session_id: str
    working_directory: str
    environment: Dict[str, str] = field(default_factory=dict)
    event: Optional[CommandResultEvent] = None


HookHandler = Callable[[HookContext], Any]


class HookRegistry:
    """
    Static replacement for dynamically loaded plugins.
    Handlers may be plain functions or coroutines. A failing handler is logged
    and never interrupts the pipeline or the remaining handlers.
    """
    def __init__(self):
        self._handlers: Dict[HookPoint, List[HookHandler]] = {point: [] for point in HookPoint}
        self._plugins: Dict[str, Any] = {}

    def register(self, hook_point: HookPoint, handler: HookHandler):
        self._handlers[hook_point].append(handler)
        logger.debug(f"Registered hook {getattr(handler, '__qualname__', handler)!r} for {hook_point.name}")

    def register_plugin(self, plugin: Any) -> str:
        """Registers every hook method a plugin object defines. Returns the plugin id."""
        plugin_id = getattr(plugin, "id", None) or type(plugin).__name__
        if plugin_id in self._plugins:
            logger.warning(f"Plugin '{plugin_id}' is already registered; ignoring duplicate.")
            return plugin_id

        self._plugins[plugin_id] = plugin
        hooked = []
        for point, method_name in PLUGIN_METHODS.items():
            method = getattr(plugin, method_name, None)
            if callable(method):
                self.register(point, method)
                hooked.append(point.name)

        on_load = getattr(plugin, "on_load", None)
        if callable(on_load):
            try:
                on_load()
            except Exception as e:
                logger.error(f"Plugin '{plugin_id}' failed in on_load: {e}", exc_info=True)
        logger.info(f"Plugin '{plugin_id}' registered for hooks: {', '.join(hooked) or 'none'}")
        return plugin_id

    def unregister_plugin(self, plugin_id: str) -> bool:
        plugin = self._plugins.pop(plugin_id, None)
        if plugin is None:
            return False
        for point, method_name in PLUGIN_METHODS.items():
            method = getattr(plugin, method_name, None)
            if method in self._handlers[point]:
                self._handlers[point].remove(method)
        on_unload = getattr(plugin, "on_unload", None)
        if callable(on_unload):
            try:
                on_unload()
            except Exception as e:
                logger.error(f"Plugin '{plugin_id}' failed in on_unload: {e}", exc_info=True)
        logger.info(f"Plugin '{plugin_id}' unregistered.")
        return True

    @property
    def plugin_ids(self) -> List[str]:
        return list(self._plugins)

    def has_handlers(self, hook_point: HookPoint) -> bool:
        return bool(self._handlers[hook_point])

    async def invoke(self, context: HookContext) -> List[Any]:
        """Runs every handler for the context's hook point in registration order."""
        results = []
        for handler in list(self._handlers[context.hook_point]):
            try:
                result = handler(context)
                if inspect.isawaitable(result):
                    result = await result
                results.append(result)
            except Exception as e:
                logger.error(f"Error in {context.hook_point.name} hook "
                             f"{getattr(handler, '__qualname__', handler)!r}: {e}", exc_info=True)
        return results
