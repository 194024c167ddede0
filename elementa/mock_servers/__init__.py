"""Mock storefront for testing."""

from .app import create_app, create_mock_app

__all__ = ["create_app", "create_mock_app"]
