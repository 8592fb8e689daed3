"""Workflow configuration loader for YAML and JSON files."""

import json
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from pimflow.domain.components.transition_rules import (
    TransitionRuleConflictError,
    TransitionRuleTable,
)
from pimflow.domain.models.quality import QualityThresholds
from pimflow.domain.models.transition_rule import TransitionRule
from pimflow.domain.models.workflow import UserRole, WorkflowAction, WorkflowState
from pimflow.domain.models.workflow_config import WorkflowConfiguration
from pimflow.infrastructure.config.defaults import default_workflow_configuration

CONFIG_FILE_ENV = "PIMFLOW_WORKFLOW_CONFIG_FILE"
ALLOWED_SECTIONS = frozenset(
    {
        "transition_rules",
        "role_permissions",
        "action_permissions",
        "quality_thresholds",
        "required_fields",
        "quality_gate_states",
    }
)


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""

    def __init__(self, message: str, field: str | None = None) -> None:
        """Initialize ConfigurationError.

        Args:
            message: Human-readable error message.
            field: Optional field name that failed validation.
        """
        self.message = message
        self.field = field
        super().__init__(self.message)

    def __str__(self) -> str:
        """Return error message with field name if available."""
        if self.field:
            return f"Configuration error in field '{self.field}': {self.message}"
        return self.message


class WorkflowConfigLoader:
    """Loads the workflow configuration from a YAML or JSON file.

    Sections missing from the file keep their built-in defaults, so a file
    can override just the quality thresholds or just the permission grants.

    Example:
        ```yaml
        quality_thresholds:
          min_image_count: 2
        role_permissions:
          viewer: ["products:read", "audit:read"]
        transition_rules:
          - from: draft
            to: review
            role: editor
            permissions: ["workflow:submit"]
            conditions: {assignedReviewer: true}
        ```
    """

    def __init__(self, config_file_path: str | Path | None = None) -> None:
        """Initialize WorkflowConfigLoader.

        Args:
            config_file_path: Path to the configuration file. If None, read
                            from the PIMFLOW_WORKFLOW_CONFIG_FILE environment variable.

        Raises:
            ConfigurationError: If no path is available or the file does not exist.
        """
        if config_file_path is None:
            config_file_path = os.getenv(CONFIG_FILE_ENV)
            if not config_file_path:
                raise ConfigurationError(
                    f"Configuration file path not provided and {CONFIG_FILE_ENV} "
                    "environment variable is not set"
                )

        self._config_path = Path(config_file_path)
        if not self._config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {self._config_path}")

    def load(self) -> WorkflowConfiguration:
        """Load, validate and merge the file over the built-in defaults.

        Returns:
            WorkflowConfiguration built from the file.

        Raises:
            ConfigurationError: If the file cannot be parsed or a section is invalid.
        """
        return self.parse(self.load_raw())

    def load_raw(self) -> dict[str, Any]:
        """Load the file contents without validation.

        Automatically detects file format (YAML or JSON) based on file extension.

        Raises:
            ConfigurationError: If file format is unsupported or cannot be parsed.
        """
        suffix = self._config_path.suffix.lower()

        if suffix in (".yaml", ".yml"):
            return self._load_yaml()
        elif suffix == ".json":
            return self._load_json()
        else:
            raise ConfigurationError(
                f"Unsupported configuration file format: {suffix}. "
                "Supported formats: .yaml, .yml, .json"
            )

    def _load_yaml(self) -> dict[str, Any]:
        try:
            with self._config_path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
                if data is None:
                    return {}
                if not isinstance(data, dict):
                    raise ConfigurationError("YAML file must contain a dictionary/mapping")
                return data
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML format: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Failed to read configuration file: {e}") from e

    def _load_json(self) -> dict[str, Any]:
        try:
            with self._config_path.open("r", encoding="utf-8") as f:
                data = json.load(f)
                if not isinstance(data, dict):
                    raise ConfigurationError("JSON file must contain an object")
                return data
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON format: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Failed to read configuration file: {e}") from e

    def parse(self, config: dict[str, Any]) -> WorkflowConfiguration:
        """Validate raw configuration data and merge it over the defaults.

        Args:
            config: Raw configuration mapping.

        Returns:
            WorkflowConfiguration.

        Raises:
            ConfigurationError: If any section is invalid.
        """
        for key in config:
            if key not in ALLOWED_SECTIONS:
                raise ConfigurationError(
                    f"Unknown configuration key: '{key}'. "
                    f"Allowed keys: {', '.join(sorted(ALLOWED_SECTIONS))}",
                    field=key,
                )

        result = default_workflow_configuration()
        updates: dict[str, Any] = {}
        if "transition_rules" in config:
            updates["transition_rules"] = self.parse_transition_rules(config)
        if "role_permissions" in config:
            updates["role_permissions"] = self.parse_role_permissions(config)
        if "action_permissions" in config:
            updates["action_permissions"] = self.parse_action_permissions(config)
        if "quality_thresholds" in config:
            updates["quality_thresholds"] = self.parse_quality_thresholds(config)
        if "required_fields" in config:
            updates["required_fields"] = self.parse_required_fields(config)
        if "quality_gate_states" in config:
            updates["quality_gate_states"] = self.parse_quality_gate_states(config)
        return result.model_copy(update=updates)

    def parse_transition_rules(self, config: dict[str, Any]) -> list[TransitionRule]:
        """Parse the transition_rules section.

        Raises:
            ConfigurationError: If a rule is malformed or two rules conflict.
        """
        rules_config = config.get("transition_rules", [])
        if not isinstance(rules_config, list):
            raise ConfigurationError(
                "Configuration 'transition_rules' must be a list", field="transition_rules"
            )

        rules = []
        for idx, rule_config in enumerate(rules_config):
            field = f"transition_rules[{idx}]"
            if not isinstance(rule_config, dict):
                raise ConfigurationError(
                    f"Transition rule at index {idx} must be a dictionary", field=field
                )
            for required in ("from", "to", "role"):
                if required not in rule_config:
                    raise ConfigurationError(
                        f"Transition rule at index {idx} missing required field '{required}'",
                        field=f"{field}.{required}",
                    )
            conditions = rule_config.get("conditions", {})
            if not isinstance(conditions, dict) or not all(
                isinstance(v, bool) for v in conditions.values()
            ):
                raise ConfigurationError(
                    f"Transition rule at index {idx} has invalid 'conditions' "
                    "(must map condition names to booleans)",
                    field=f"{field}.conditions",
                )
            rules.append(
                TransitionRule(
                    from_state=self._enum(WorkflowState, rule_config["from"], f"{field}.from"),
                    to_state=self._enum(WorkflowState, rule_config["to"], f"{field}.to"),
                    required_role=self._enum(UserRole, rule_config["role"], f"{field}.role"),
                    required_permissions=self._string_list(
                        rule_config.get("permissions", []), f"{field}.permissions"
                    ),
                    is_automatic=bool(rule_config.get("automatic", False)),
                    conditions=conditions,
                )
            )

        try:
            TransitionRuleTable(rules)
        except TransitionRuleConflictError as e:
            raise ConfigurationError(str(e), field="transition_rules") from e
        return rules

    def parse_role_permissions(self, config: dict[str, Any]) -> dict[UserRole, list[str]]:
        section = config.get("role_permissions", {})
        if not isinstance(section, dict):
            raise ConfigurationError(
                "Configuration 'role_permissions' must be a mapping", field="role_permissions"
            )
        return {
            self._enum(UserRole, role, f"role_permissions.{role}"): self._string_list(
                grants, f"role_permissions.{role}"
            )
            for role, grants in section.items()
        }

    def parse_action_permissions(self, config: dict[str, Any]) -> dict[WorkflowAction, list[str]]:
        section = config.get("action_permissions", {})
        if not isinstance(section, dict):
            raise ConfigurationError(
                "Configuration 'action_permissions' must be a mapping", field="action_permissions"
            )
        parsed = dict(default_workflow_configuration().action_permissions)
        for action, required in section.items():
            parsed[self._enum(WorkflowAction, action, f"action_permissions.{action}")] = (
                self._string_list(required, f"action_permissions.{action}")
            )
        return parsed

    def parse_quality_thresholds(self, config: dict[str, Any]) -> QualityThresholds:
        section = config.get("quality_thresholds", {})
        if not isinstance(section, dict):
            raise ConfigurationError(
                "Configuration 'quality_thresholds' must be a mapping", field="quality_thresholds"
            )
        try:
            return QualityThresholds(**section)
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first["loc"])
            raise ConfigurationError(
                first["msg"], field=f"quality_thresholds.{location}"
            ) from e

    def parse_required_fields(self, config: dict[str, Any]) -> dict[WorkflowState, list[str]]:
        section = config.get("required_fields", {})
        if not isinstance(section, dict):
            raise ConfigurationError(
                "Configuration 'required_fields' must be a mapping", field="required_fields"
            )
        return {
            self._enum(WorkflowState, state, f"required_fields.{state}"): self._string_list(
                fields, f"required_fields.{state}"
            )
            for state, fields in section.items()
        }

    def parse_quality_gate_states(self, config: dict[str, Any]) -> list[WorkflowState]:
        states = config.get("quality_gate_states", [])
        if not isinstance(states, list):
            raise ConfigurationError(
                "Configuration 'quality_gate_states' must be a list", field="quality_gate_states"
            )
        return [
            self._enum(WorkflowState, state, f"quality_gate_states[{idx}]")
            for idx, state in enumerate(states)
        ]

    @staticmethod
    def _enum(enum_cls: Any, value: Any, field: str) -> Any:
        try:
            return enum_cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(member.value for member in enum_cls)
            raise ConfigurationError(
                f"Invalid value '{value}' (allowed: {allowed})", field=field
            ) from None

    @staticmethod
    def _string_list(value: Any, field: str) -> list[str]:
        if not isinstance(value, list) or not all(
            isinstance(item, str) and item.strip() for item in value
        ):
            raise ConfigurationError("Must be a list of non-empty strings", field=field)
        return [item.strip() for item in value]


def load_workflow_configuration(path: str | Path | None) -> WorkflowConfiguration:
    """Load the workflow configuration from ``path``, or return the defaults when None."""
    if path is None:
        return default_workflow_configuration()
    return WorkflowConfigLoader(path).load()
