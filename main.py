# main.py

import asyncio
import os
import sys
import logging
import datetime
from dataclasses import dataclass
from typing import Optional

from universe_terminal import config_handler
from universe_terminal.advisory_engine import AdvisoryEngine
from universe_terminal.authorization import Authorizer, ConsoleAuthorizer
from universe_terminal.classifier import OllamaCommandClassifier
from universe_terminal.command_catalog import DEFAULT_CATALOG_FILENAME, JsonCommandCatalog
from universe_terminal.command_executor import CommandExecutor
from universe_terminal.command_pipeline import CommandPipeline
from universe_terminal.errors import ConfigurationError
from universe_terminal.learning_tracker import LearningTracker, thresholds_from_config
from universe_terminal.persistence import JsonProgressStore, JsonSessionStore
from universe_terminal.plugin_hooks import HookRegistry
from universe_terminal.safety_engine import SafetyEngine
from universe_terminal.sandbox import SandboxedFileSystem
from universe_terminal.session_manager import SessionManager
from universe_terminal.shell_ui import ShellUI

LOG_DIR = "logs"
CONFIG_DIR = "config"

SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
os.makedirs(os.path.join(SCRIPT_DIR, LOG_DIR), exist_ok=True)
LOG_FILE = os.path.join(SCRIPT_DIR, LOG_DIR, "universe_terminal.log")

# Logging configuration
logging.basicConfig(
    level=logging.DEBUG,
    format='%(asctime)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s',
    handlers=[logging.FileHandler(LOG_FILE)]
)
logger = logging.getLogger(__name__)


@dataclass
class TerminalComponents:
    sandbox: SandboxedFileSystem
    safety_engine: SafetyEngine
    catalog: JsonCommandCatalog
    learning_tracker: LearningTracker
    executor: CommandExecutor
    hooks: HookRegistry
    pipeline: CommandPipeline
    advisory_engine: AdvisoryEngine
    manager: SessionManager


def resolve_path(path: str) -> str:
    """Expands ~ and anchors relative paths at the project directory."""
    expanded = os.path.expanduser(path)
    return expanded if os.path.isabs(expanded) else os.path.join(SCRIPT_DIR, expanded)


def apply_logging_config(config: dict):
    level_name = str(config_handler.get_config_value(config, "logging.level", "DEBUG")).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        logger.warning(f"Unknown logging level '{level_name}' in config; keeping DEBUG.")
        return
    logging.getLogger().setLevel(level)
    logger.info(f"Log level set to {level_name}")


def build_components(config: dict, authorizer: Optional[Authorizer] = None) -> TerminalComponents:
    """Wires the engine together from configuration."""
    def get(key, default=None):
        return config_handler.get_config_value(config, key, default)

    sandbox = SandboxedFileSystem(resolve_path(get("paths.sandbox_root", "~/.universe_terminal/home")))
    safety_engine = SafetyEngine.from_config(config)

    user_catalog = get("paths.user_command_catalog")
    catalog = JsonCommandCatalog(
        os.path.join(SCRIPT_DIR, CONFIG_DIR, DEFAULT_CATALOG_FILENAME),
        resolve_path(user_catalog) if user_catalog else None,
    )

    progress_file = get("paths.progress_file")
    learning_tracker = LearningTracker(
        thresholds=thresholds_from_config(config),
        progress_store=JsonProgressStore(resolve_path(progress_file)) if progress_file else None,
    )

    executor = CommandExecutor(sandbox, timeout_seconds=float(get("timeouts.command_execution_seconds", 60)))
    hooks = HookRegistry()
    pipeline = CommandPipeline(
        safety_engine, executor, authorizer=authorizer, hooks=hooks,
        authorization_timeout=float(get("timeouts.authorization_timeout_seconds", 30)),
    )
    advisory_engine = AdvisoryEngine.from_config(
        config, catalog, safety_engine,
        tip_provider=learning_tracker,
        classifier=OllamaCommandClassifier.from_config(config),
        builtin_names=executor.builtins,
    )

    store_dir = get("paths.session_store_dir")
    idle_timeout = get("timeouts.session_idle_timeout_seconds")
    manager = SessionManager(
        pipeline, advisory_engine, sandbox,
        session_store=JsonSessionStore(resolve_path(store_dir)) if store_dir else None,
        learning_tracker=learning_tracker,
        monitor_interval=float(get("timeouts.monitor_interval_seconds", 1)),
        idle_timeout=float(idle_timeout) if idle_timeout else None,
    )
    return TerminalComponents(sandbox, safety_engine, catalog, learning_tracker, executor,
                              hooks, pipeline, advisory_engine, manager)


async def main_async_runner():
    """Loads configuration, builds the engine and runs the interactive shell."""
    config = config_handler.load_configuration(os.path.join(SCRIPT_DIR, CONFIG_DIR))
    apply_logging_config(config)

    components = build_components(config, authorizer=ConsoleAuthorizer())
    await components.manager.start()
    history_path = resolve_path(config_handler.get_config_value(
        config, "paths.history_file", ".universe_terminal_history"))
    ui = ShellUI(components.manager, components.advisory_engine, components.learning_tracker,
                 config, history_path)
    try:
        await ui.run()
    finally:
        await components.manager.shutdown()
    logger.info("Universe Terminal shell loop completed.")


def run_shell():
    """ Main entry point to run the shell application. """
    logger.info("=" * 80)
    logger.info("  Universe Terminal Session Started")
    logger.info(f"  Timestamp: {datetime.datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    logger.info("=" * 80)
    try:
        asyncio.run(main_async_runner())
        print("\nExiting Universe Terminal. 👋")
    except ConfigurationError as e:
        print(f"\nFATAL STARTUP ERROR: {e}", file=sys.stderr)
        print(f"Please ensure '{CONFIG_DIR}/{config_handler.DEFAULT_CONFIG_FILENAME}' exists and is valid JSON.",
              file=sys.stderr)
        logger.critical(f"Application halting due to fatal configuration error: {e}")
    except (EOFError, KeyboardInterrupt):
        print("\nExiting Universe Terminal. 👋")
        logger.info("Exiting due to EOF or KeyboardInterrupt at run_shell level.")
    except Exception as e:
        print(f"\nUnexpected critical error: {e}. Check logs at {LOG_FILE}", file=sys.stderr)
        logger.critical("Critical error in run_shell or main_async_runner", exc_info=True)
    finally:
        logger.info("=" * 80)
        logger.info("  Universe Terminal Session Ended")
        logger.info(f"  Timestamp: {datetime.datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        logger.info("=" * 80)
        logging.shutdown()


if __name__ == "__main__":
    run_shell()
