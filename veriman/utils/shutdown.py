"""interrupt handling: SIGINT/SIGTERM exit with 128 + signum after running cleanup handlers"""

import signal
import sys
import threading
import atexit
import logging
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


class ShutdownManager:
    """process-wide singleton; owns the cleanup handlers of live runs (working directories)"""

    _instance: Optional["ShutdownManager"] = None
    _lock = threading.Lock()

    def __init__(self, install_signal_handlers: bool = True):
        """use get_instance()"""
        self._shutdown_requested = threading.Event()
        self._cleanup_handlers: List[Tuple[Callable[[], None], str]] = []
        self._handlers_lock = threading.Lock()
        self._cleanup_done = threading.Event()
        self._cleanup_lock = threading.Lock()
        self._shutdown_reason: Optional[str] = None
        if install_signal_handlers:
            self._setup_signal_handlers()

    @classmethod
    def get_instance(cls) -> "ShutdownManager":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def _setup_signal_handlers(self):
        try:
            signal.signal(signal.SIGTERM, self._signal_handler)
            signal.signal(signal.SIGINT, self._signal_handler)
            atexit.register(self._atexit_handler)
            logger.debug("Shutdown handlers registered successfully")
        except (ValueError, OSError) as e:
            logger.warning(f"Failed to register shutdown handlers: {e}")

    def _signal_handler(self, signum, frame):
        """raises SystemExit in the main thread; a running back-end sees it and kills its child"""
        try:
            signal_name = signal.Signals(signum).name
            self._shutdown_reason = signal_name
        except (ValueError, AttributeError):
            self._shutdown_reason = f"signal_{signum}"

        self._shutdown_requested.set()

        exit_code = 128 + signum
        sys.exit(exit_code)

    def _atexit_handler(self):
        self.run_cleanup()

    def register_cleanup(self, handler: Callable[[], None], name: str = None):
        """handlers run in reverse order of registration and must be idempotent"""
        handler_name = name or getattr(handler, '__name__', 'unknown')
        with self._handlers_lock:
            self._cleanup_handlers.append((handler, handler_name))
        logger.debug(f"Registered cleanup handler: {handler_name}")

    def unregister_cleanup(self, handler: Callable[[], None]) -> None:
        with self._handlers_lock:
            self._cleanup_handlers = [(h, n) for h, n in self._cleanup_handlers if h is not handler]

    def is_shutdown_requested(self) -> bool:
        return self._shutdown_requested.is_set()

    def request_shutdown(self, reason: str = "programmatic"):
        logger.info(f"Programmatic shutdown requested: {reason}")
        self._shutdown_reason = reason
        self._shutdown_requested.set()

    @property
    def shutdown_reason(self) -> Optional[str]:
        return self._shutdown_reason

    def run_cleanup(self):
        """run all registered cleanup handlers once"""
        if not self._cleanup_lock.acquire(blocking=False):
            logger.debug("Cleanup already in progress (another thread), skipping")
            return

        try:
            if self._cleanup_done.is_set():
                logger.debug("Cleanup already completed, skipping")
                return

            if self._cleanup_handlers:
                logger.debug(f"Running {len(self._cleanup_handlers)} cleanup handlers...")
                for handler, name in reversed(self._cleanup_handlers):
                    try:
                        logger.debug(f"Running cleanup: {name}")
                        handler()
                    except Exception as e:
                        logger.warning(f"Error in cleanup handler '{name}': {e}", exc_info=True)

            self._cleanup_done.set()

        finally:
            self._cleanup_lock.release()


def get_shutdown_manager() -> ShutdownManager:
    return ShutdownManager.get_instance()


def register_cleanup(handler: Callable[[], None], name: str = None):
    get_shutdown_manager().register_cleanup(handler, name)


def unregister_cleanup(handler: Callable[[], None]):
    get_shutdown_manager().unregister_cleanup(handler)


def is_shutdown_requested() -> bool:
    return get_shutdown_manager().is_shutdown_requested()


def request_shutdown(reason: str = "programmatic"):
    get_shutdown_manager().request_shutdown(reason)
