"""Plugin API endpoints.

Provides REST endpoints for listing plugins, checking their health,
reloading them and triggering a fetch manually.
"""

import logging

from fastapi import APIRouter, Depends, status

from topix.server.api.dependencies import get_runtime, get_scheduler
from topix.server.models.plugin import (
    FetchResponse,
    PluginHealthListResponse,
    PluginHealthResponse,
    PluginListResponse,
    PluginResponse,
    ReloadResponse,
)
from topix.server.plugins.runtime import PluginRuntime
from topix.server.services.scheduler_service import SchedulerService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/plugins",
    tags=["plugins"],
)


@router.get(
    "",
    response_model=PluginListResponse,
    status_code=status.HTTP_200_OK,
    summary="List loaded plugins",
    description="Returns every loaded plugin with its configuration and scheduling state",
)
async def list_plugins(
    runtime: PluginRuntime = Depends(get_runtime),
    scheduler: SchedulerService = Depends(get_scheduler),
) -> PluginListResponse:
    """List loaded plugins.

    Returns:
        Plugins ordered by id
    """
    configs = runtime.applied_configs()
    plugins = []
    for plugin in sorted(runtime.registry.list_plugins(), key=lambda p: p.descriptor.id):
        descriptor = plugin.descriptor
        config = configs.get(descriptor.id)
        plugins.append(
            PluginResponse(
                id=descriptor.id,
                name=descriptor.name,
                version=descriptor.version,
                author=descriptor.author,
                description=descriptor.description,
                builtin=runtime.registry.is_builtin(descriptor.id),
                enabled=bool(config and config.enabled),
                initialized=runtime.is_initialized(descriptor.id),
                state=scheduler.get_plugin_state(descriptor.id),
                schedule=config.schedule if config else None,
                next_run=scheduler.get_next_run(descriptor.id),
                last_run=config.last_run if config else None,
                last_error=config.last_error if config else None,
                retention=plugin.retention_policy().describe(),
            )
        )
    return PluginListResponse(plugins=plugins, total=len(plugins))


@router.get(
    "/health",
    response_model=PluginHealthListResponse,
    status_code=status.HTTP_200_OK,
    summary="Check plugin health",
)
async def plugins_health(runtime: PluginRuntime = Depends(get_runtime)) -> PluginHealthListResponse:
    """Run every plugin's health check."""
    results = await runtime.check_all_health()
    plugins = {
        plugin_id: PluginHealthResponse(
            plugin_id=plugin_id,
            healthy=result.healthy,
            message=result.message,
            last_checked=result.last_checked,
        )
        for plugin_id, result in results.items()
    }
    healthy = sum(1 for result in results.values() if result.healthy)
    return PluginHealthListResponse(plugins=plugins, healthy=healthy, total=len(plugins))


@router.post(
    "/{plugin_id}/reload",
    response_model=ReloadResponse,
    status_code=status.HTTP_200_OK,
    summary="Reload a plugin",
    description="Shuts the plugin down and initializes it again with its current configuration",
)
async def reload_plugin(
    plugin_id: str,
    runtime: PluginRuntime = Depends(get_runtime),
    scheduler: SchedulerService = Depends(get_scheduler),
) -> ReloadResponse:
    """Reload a plugin.

    Args:
        plugin_id: Plugin identifier

    Returns:
        Whether the plugin initialized again

    Raises:
        PluginNotFoundError: If no plugin has this id (404)
        PluginNotEnabledError: If the plugin is not enabled (409)
    """
    initialized = await runtime.reinitialize_plugin(plugin_id)
    config = runtime.get_plugin_config(plugin_id)
    if scheduler.is_running and config is not None:
        scheduler.reschedule_plugin(plugin_id, config.schedule)

    if initialized:
        message = f"Plugin {plugin_id} reloaded"
    else:
        message = f"Plugin {plugin_id} failed to reload: {config.last_error if config else 'unknown error'}"
    logger.info(message)
    return ReloadResponse(plugin_id=plugin_id, initialized=initialized, message=message)


@router.post(
    "/{plugin_id}/fetch",
    response_model=FetchResponse,
    status_code=status.HTTP_200_OK,
    summary="Fetch a plugin now",
    description="Runs one fetch immediately; returns 409 while another fetch is in flight",
)
async def fetch_plugin(plugin_id: str, runtime: PluginRuntime = Depends(get_runtime)) -> FetchResponse:
    """Trigger a fetch.

    Args:
        plugin_id: Plugin identifier

    Returns:
        Number and ids of fetched headlines

    Raises:
        PluginNotFoundError: If no plugin has this id (404)
        PluginNotEnabledError: If the plugin is not enabled (409)
        FetchInProgressError: If a fetch is already running (409)
        PluginExecutionError: If the plugin fails (502)
    """
    headlines = await runtime.fetch_one(plugin_id)
    return FetchResponse(
        plugin_id=plugin_id,
        count=len(headlines),
        headline_ids=[h.id for h in headlines],
    )
