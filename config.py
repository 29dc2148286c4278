"""
Configuration management for the generation gateway.

Loads environment variables from .env file and provides typed access to configuration.
Backend and log store settings live in infra.config.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
env_path = Path(__file__).parent / ".env"
load_dotenv(env_path)


class Config:
    """Configuration class for the gateway server."""

    # Server
    GATEWAY_HOST = os.getenv("GATEWAY_HOST", "0.0.0.0")
    GATEWAY_PORT = int(os.getenv("PORT", "8080"))

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # LLM Backend (informational; selection happens in infra.config)
    LLM_BACKEND = os.getenv("LLM_BACKEND", "ollama")

    # Environment
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

    @classmethod
    def validate(cls) -> bool:
        """Validate that server configuration is usable."""
        if not 0 < cls.GATEWAY_PORT < 65536:
            return False
        return cls.LOG_LEVEL in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


if __name__ == "__main__":
    # Test configuration loading
    print("Configuration loaded:")
    print(f"  Host: {Config.GATEWAY_HOST}")
    print(f"  Port: {Config.GATEWAY_PORT}")
    print(f"  LLM Backend: {Config.LLM_BACKEND}")
    print(f"  Environment: {Config.ENVIRONMENT}")
    print(f"\n  Validation: {'✓ PASSED' if Config.validate() else '✗ FAILED'}")
