"""API package for SkyGig."""

from .main import app, create_app
from .routes import all_routers, get_caller_id, get_marketplace

__all__ = ["app", "create_app", "all_routers", "get_caller_id", "get_marketplace"]
