"""
Command dispatcher routing bridge commands to handlers by kind.

Each command kind has at most one handler. Commands without a handler are
logged and dropped: the UI layer may legitimately send kinds an older
core does not know about.
"""

import logging
import time
from typing import Any, Dict

from ..domain.messages import BridgeCommand, CommandKind
from ..interfaces.lifecycle import IComponent
from ..interfaces.messaging import CommandHandler, ICommandDispatcher

logger = logging.getLogger(__name__)


class CommandDispatcher(IComponent, ICommandDispatcher):
    """
    Command dispatcher implementation.

    Routes commands to the handler registered for their kind and keeps
    simple dispatch metrics.
    """

    def __init__(self) -> None:
        self._handlers: Dict[CommandKind, CommandHandler] = {}
        self._running = False

        # Metrics
        self._metrics: Dict[str, Any] = {
            'commands_dispatched': 0,
            'commands_dropped': 0,
            'commands_failed': 0,
            'avg_processing_time': 0.0,
            'processing_times': []
        }

    @property
    def name(self) -> str:
        """Get component name."""
        return "CommandDispatcher"

    async def start(self) -> None:
        """Start the command dispatcher."""
        if self._running:
            return

        self._running = True
        logger.info("Command dispatcher started")

    async def stop(self) -> None:
        """Stop the command dispatcher."""
        if not self._running:
            return

        self._running = False
        logger.info("Command dispatcher stopped")

    async def check_health(self) -> Dict[str, Any]:
        """Check command dispatcher health."""
        return {
            'healthy': True,
            'status': 'running' if self._running else 'stopped',
            'details': {
                'handled_kinds': sorted(kind.value for kind in self._handlers),
                'commands_dispatched': self._metrics['commands_dispatched'],
                'commands_dropped': self._metrics['commands_dropped'],
                'commands_failed': self._metrics['commands_failed'],
                'avg_processing_time': self._metrics['avg_processing_time']
            }
        }

    def register_handler(self, kind: CommandKind, handler: CommandHandler) -> None:
        """Register the handler for a command kind."""
        if kind in self._handlers:
            logger.warning(f"Replacing handler for command kind '{kind.value}'")
        self._handlers[kind] = handler
        logger.debug(f"Registered handler for command kind '{kind.value}'")

    def unregister_handler(self, kind: CommandKind) -> bool:
        """Unregister the handler for a command kind."""
        return self._handlers.pop(kind, None) is not None

    async def dispatch(self, command: BridgeCommand) -> bool:
        """Dispatch a command to the handler registered for its kind."""
        if not self._running:
            raise RuntimeError("Command dispatcher is not running")

        handler = self._handlers.get(command.kind)
        if handler is None:
            self._metrics['commands_dropped'] += 1
            logger.warning(f"No handler for command kind '{command.kind.value}', dropping it")
            return False

        start_time = time.time()
        try:
            await handler(command)
            self._metrics['commands_dispatched'] += 1
            return True

        except Exception as e:
            self._metrics['commands_failed'] += 1
            logger.error(f"Handler for '{command.kind.value}' failed: {e}")
            raise

        finally:
            processing_time = time.time() - start_time
            times = self._metrics['processing_times']
            times.append(processing_time)

            # Keep only last 1000 processing times
            if len(times) > 1000:
                del times[:-1000]

            self._metrics['avg_processing_time'] = sum(times) / len(times)

    async def get_metrics(self) -> Dict[str, Any]:
        """Get command dispatcher metrics."""
        return dict(self._metrics)
