"""Hot-reload planning.

``plan_reload`` compares the currently applied plugin configurations with
the desired ones and returns the minimal set of lifecycle and scheduling
actions. It has no side effects, so reload decisions can be tested without
timers or I/O.
"""

from dataclasses import dataclass, field
from typing import AbstractSet, Dict, List, Mapping

from topix.server.plugins.types import PluginRuntimeConfig


@dataclass
class ReloadPlan:
    """Actions needed to move from the applied to the desired configuration.

    Attributes:
        shutdown: Plugins disabled or removed (shut down, then unscheduled)
        reinitialize: Plugins still enabled whose settings changed
        initialize: Plugins newly enabled
        schedule: Plugin id to cron expression for new or changed schedules
        unschedule: Plugins whose timer must be removed
        orphaned: Enabled plugin ids that match no loaded plugin
    """

    shutdown: List[str] = field(default_factory=list)
    reinitialize: List[str] = field(default_factory=list)
    initialize: List[str] = field(default_factory=list)
    schedule: Dict[str, str] = field(default_factory=dict)
    unschedule: List[str] = field(default_factory=list)
    orphaned: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (
            self.shutdown or self.reinitialize or self.initialize or self.schedule or self.unschedule
        )

    def describe(self) -> str:
        parts = []
        for name in ("shutdown", "reinitialize", "initialize", "unschedule", "orphaned"):
            ids = getattr(self, name)
            if ids:
                parts.append(f"{name}={sorted(ids)}")
        if self.schedule:
            parts.append(f"schedule={dict(sorted(self.schedule.items()))}")
        return ", ".join(parts) or "no changes"


def plan_reload(
    current: Mapping[str, PluginRuntimeConfig],
    desired: Mapping[str, PluginRuntimeConfig],
    loaded: AbstractSet[str],
) -> ReloadPlan:
    """Compute the reload plan for a configuration change.

    Args:
        current: Applied configurations keyed by plugin id
        desired: New configurations keyed by plugin id
        loaded: Ids of plugins known to the registry

    Returns:
        ReloadPlan describing the required actions
    """
    plan = ReloadPlan()

    for plugin_id in sorted(set(current) | set(desired)):
        old = current.get(plugin_id)
        new = desired.get(plugin_id)
        was_enabled = bool(old and old.enabled)
        is_enabled = bool(new and new.enabled)

        if is_enabled and plugin_id not in loaded:
            plan.orphaned.append(plugin_id)
            if was_enabled:
                plan.unschedule.append(plugin_id)
            continue

        if was_enabled and not is_enabled:
            if plugin_id in loaded:
                plan.shutdown.append(plugin_id)
            plan.unschedule.append(plugin_id)
        elif is_enabled and not was_enabled:
            plan.initialize.append(plugin_id)
            plan.schedule[plugin_id] = new.schedule
        elif is_enabled and was_enabled:
            if not new.same_settings(old):
                plan.reinitialize.append(plugin_id)
            if new.schedule != old.schedule:
                plan.schedule[plugin_id] = new.schedule

    return plan
