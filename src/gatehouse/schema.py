"""
Schema definitions for Gatehouse.

This module defines the Pydantic models used at Gatehouse's edges:
- EngineConfig: How an engine instance loads and evaluates policy
- LoadQueueEntry: A policy source waiting to be loaded

Design Decisions:
    - Models are immutable (frozen=True) and reject unknown keys
    - Every field has a default, so an empty config file is valid
    - Configuration is read from YAML, like the policy files of other tools
"""

from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from gatehouse.kernel.knowledge import DEFAULT_MAX_DEPTH

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


# =============================================================================
# Engine Configuration
# =============================================================================


class EngineConfig(BaseModel):
    """
    Engine configuration.

    Attributes:
        policy_extension: File extension policy files must carry
        load_roles_prelude: Load the role-hierarchy rules into every knowledge base
        check_inline_queries: Run ``?=`` inline queries while loading
        max_query_depth: Maximum nesting of rule applications per query
        log_level: Level for the ``gatehouse`` logger when configured via the CLI
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    policy_extension: str = Field(
        default="polar",
        description="Required policy file extension, without the dot",
        min_length=1,
    )
    load_roles_prelude: bool = Field(
        default=True,
        description="Load the role-hierarchy prelude into every knowledge base",
    )
    check_inline_queries: bool = Field(
        default=True,
        description="Fail loading when an inline query has no results",
    )
    max_query_depth: int = Field(
        default=DEFAULT_MAX_DEPTH,
        description="Maximum nesting of rule applications per query",
        gt=0,
    )
    log_level: str = Field(
        default="WARNING",
        description="Logging level name",
    )

    @field_validator("policy_extension")
    @classmethod
    def strip_leading_dot(cls, v: str) -> str:
        """Accept ``.polar`` as well as ``polar``."""
        v = v.lstrip(".")
        if not v:
            msg = "policy_extension cannot be empty"
            raise ValueError(msg)
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and validate the level name."""
        level = v.upper()
        if level not in LOG_LEVELS:
            msg = f"log_level must be one of {', '.join(LOG_LEVELS)}"
            raise ValueError(msg)
        return level


# =============================================================================
# Load Queue
# =============================================================================


class LoadQueueEntry(BaseModel):
    """
    A policy source snapshot waiting in the load queue.

    The text is captured when the file is enqueued, so later edits to the
    file do not affect what gets loaded.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    source_id: str = Field(..., description="Filename or synthetic source name")
    text: str = Field(..., description="Policy source text")


# =============================================================================
# Loading Functions
# =============================================================================


def load_config(path: Path | str) -> EngineConfig:
    """
    Load engine configuration from a YAML file.

    Args:
        path: Path to the YAML file

    Returns:
        Validated EngineConfig object

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValidationError: If the YAML doesn't match the schema
    """
    path = Path(path)
    with path.open() as f:
        data = yaml.safe_load(f)

    return EngineConfig.model_validate(data or {})


def load_config_from_string(content: str) -> EngineConfig:
    """Load engine configuration from a YAML string."""
    data = yaml.safe_load(content)
    return EngineConfig.model_validate(data or {})
