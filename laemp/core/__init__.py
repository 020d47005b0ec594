"""Core abstractions: resources, execution context, runner, executor."""

from laemp.core.errors import (
    CommandError,
    ConfigurationError,
    DependencyError,
    DetectionError,
    LaempError,
    TemplateError,
)
from laemp.core.resource import Action, Change, Distro, Plan, Resource, State

__all__ = [
    "Action",
    "Change",
    "CommandError",
    "ConfigurationError",
    "DependencyError",
    "DetectionError",
    "Distro",
    "LaempError",
    "Plan",
    "Resource",
    "State",
    "TemplateError",
]
