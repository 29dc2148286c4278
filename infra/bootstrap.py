"""
Infrastructure initialization and bootstrap.

Singleton pattern for creating the generation backend and the
interaction log from configuration.
"""

import logging
from typing import Optional

from inference import ModelBackend
from observability import InteractionLogger

from .config import BackendSelection, InfraConfig, get_config

logger = logging.getLogger(__name__)


class InfraBootstrap:
    """
    Bootstrap infrastructure based on configuration.

    Singleton pattern - single instance per process. Owns the shared
    backend and the exclusive log store handle until shutdown().
    """

    _instance: Optional["InfraBootstrap"] = None

    def __init__(self, config: Optional[InfraConfig] = None):
        """
        Initialize bootstrap with configuration.

        Raises:
            BackendConfigError: backend misconfigured and fallback disabled
            LoggingError: interaction log cannot be opened
        """
        self.config = config or get_config()
        self.selection: BackendSelection = self.config.create_llm_backend()
        self.interaction_log = InteractionLogger(
            self.config.interaction_log_path,
            backend_kind=self.selection.kind.value,
            backend_model=self.selection.model,
            fallback_reason=self.selection.fallback_reason,
        )

    @classmethod
    def get_instance(cls, config: Optional[InfraConfig] = None) -> "InfraBootstrap":
        """
        Get singleton instance.

        Args:
            config: Optional custom configuration (only used first time)

        Returns:
            Singleton InfraBootstrap instance
        """
        if cls._instance is None:
            cls._instance = cls(config)
        return cls._instance

    @classmethod
    def current(cls) -> Optional["InfraBootstrap"]:
        """Return the singleton if it has been bootstrapped, else None."""
        return cls._instance

    @classmethod
    def reset(cls):
        """Shut down and drop the singleton (for testing)."""
        if cls._instance is not None:
            cls._instance.shutdown()
        cls._instance = None

    def get_llm_backend(self) -> ModelBackend:
        """Get LLM backend."""
        return self.selection.backend

    def get_interaction_log(self) -> InteractionLogger:
        """Get interaction logger."""
        return self.interaction_log

    def shutdown(self) -> None:
        """Release the log store; safe to call more than once."""
        self.interaction_log.close()

    def __repr__(self) -> str:
        """String representation showing configured backends."""
        fallback = " (fallback)" if self.selection.degraded else ""
        return (
            f"InfraBootstrap(llm={self.selection.kind.value}{fallback}, "
            f"log={self.config.interaction_log_path})"
        )


def bootstrap_infrastructure(config: Optional[InfraConfig] = None) -> InfraBootstrap:
    """
    Bootstrap all infrastructure backends.

    Args:
        config: Optional custom configuration

    Returns:
        InfraBootstrap instance with all backends initialized
    """
    return InfraBootstrap.get_instance(config)
