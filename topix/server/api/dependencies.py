"""FastAPI dependencies.

Components are taken from the service manager attached to the application
state by ``create_app``.
"""

from fastapi import Request

from topix.server.plugins.runtime import PluginRuntime
from topix.server.services.config_manager import ConfigManager
from topix.server.services.scheduler_service import SchedulerService
from topix.server.store import HeadlineStore


def get_service(request: Request):
    """Get the service manager serving this request."""
    return request.app.state.service


def get_runtime(request: Request) -> PluginRuntime:
    return get_service(request).runtime


def get_store(request: Request) -> HeadlineStore:
    return get_service(request).store


def get_scheduler(request: Request) -> SchedulerService:
    return get_service(request).scheduler


def get_config_manager(request: Request) -> ConfigManager:
    return get_service(request).config_manager
