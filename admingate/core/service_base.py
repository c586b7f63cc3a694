# admingate/core/service_base.py
"""
Lifecycle shared by the gate's backing services.

A service validates its configuration, opens its client once, reports
health for ``/health/security`` and releases its client on shutdown.
"""
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, TypeVar, Generic
import logging
from admingate.core.exceptions import ServiceError, ConfigurationError

ConfigType = TypeVar('ConfigType')


class BaseService(ABC, Generic[ConfigType]):
    """Backing service with a single client opened by ``initialize``"""

    def __init__(
        self,
        config: Optional[ConfigType] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.config = config
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        self.service_name = self.__class__.__name__
        self._initialized = False
        self._client = None

    @abstractmethod
    async def _initialize_client(self) -> Any:
        """Open the client; may return None when the backend is disabled"""

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Dict with ``healthy``, ``status`` and optional ``details``"""

    def _validate_config(self) -> None:
        """Raise ConfigurationError for unusable configuration"""
        if self.config is None:
            self.logger.debug(f"No configuration provided for {self.service_name}")

    async def initialize(self) -> None:
        """Open the client once; later calls do nothing"""
        if self._initialized:
            return

        self.logger.info(f"Initializing {self.service_name}...")
        try:
            self._validate_config()
            self._client = await self._initialize_client()
        except ConfigurationError:
            raise
        except Exception as e:
            self.logger.error(f"{self.service_name} failed to start", exc_info=True)
            raise ServiceError(
                f"Failed to initialize {self.service_name}",
                service_name=self.service_name,
                details={'original_error': str(e), 'error_type': type(e).__name__}
            )
        self._initialized = True

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def shutdown(self) -> None:
        """Release the client. Errors are logged, never raised."""
        if not self._initialized:
            return

        try:
            await self._cleanup()
        except Exception:
            self.logger.error(f"Error during {self.service_name} shutdown", exc_info=True)
        self._client = None
        self._initialized = False
        self.logger.info(f"{self.service_name} shut down")

    async def _cleanup(self) -> None:
        pass
