"""Cloud portal FastAPI application."""

from .main import AppDependencies, build_dependencies, create_app
from .settings import PortalSettings

__all__ = ["AppDependencies", "build_dependencies", "create_app", "PortalSettings"]
