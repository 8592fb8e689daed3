"""Configuration infrastructure module."""

from pimflow.infrastructure.config.defaults import default_workflow_configuration
from pimflow.infrastructure.config.file_loader import (
    ConfigurationError,
    WorkflowConfigLoader,
    load_workflow_configuration,
)
from pimflow.infrastructure.config.settings import PimflowSettings

__all__ = [
    "PimflowSettings",
    "WorkflowConfigLoader",
    "ConfigurationError",
    "default_workflow_configuration",
    "load_workflow_configuration",
]
