"""
Infrastructure module exports.

Configuration, backend selection and bootstrap for the gateway.
"""

from .config import InfraConfig, BackendSelection, get_config, select_backend, build_backend
from .bootstrap import InfraBootstrap, bootstrap_infrastructure

__all__ = [
    "InfraConfig",
    "BackendSelection",
    "get_config",
    "select_backend",
    "build_backend",
    "InfraBootstrap",
    "bootstrap_infrastructure",
]
