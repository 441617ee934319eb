"""Runtime configuration, env-driven.

Centralized config using pydantic-settings. Reads from a .env file and
PHASEGATE_* environment variables.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ReviewerProviderConfig(BaseModel):
    """One entry in the reviewer rotation."""

    provider: str
    model: str
    temperature: float = 0.3


DEFAULT_REVIEWER_PROVIDERS: list[ReviewerProviderConfig] = [
    ReviewerProviderConfig(provider="openai", model="gpt-4o", temperature=0.3),
    ReviewerProviderConfig(provider="gemini", model="gemini-2.0-flash", temperature=0.3),
]


class PhasegateConfig(BaseSettings):
    """Pipeline configuration with environment variable overrides.

    All settings can be overridden via PHASEGATE_* environment variables
    or a .env file in the working directory.

    Examples
    --------
    Override via environment::

        export PHASEGATE_LOG_LEVEL=DEBUG
        export PHASEGATE_CONSENSUS_THRESHOLD=0.9
        export PHASEGATE_TEST_COMMAND="pytest -q"

    Or via .env file::

        PHASEGATE_COLLABORATORS=myproject.ai:build_collaborators
        PHASEGATE_REVIEWER_TIMEOUT_SECONDS=60
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PHASEGATE_",
        env_file_encoding="utf-8",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Project-relative paths
    docs_dir: Path = Path("docs")
    state_path: Path = Path(".phasegate/pipeline-state.json")
    skills_dir: Path = Path("skills")

    # Recovery budget
    max_recovery_iterations: int = 5

    # Consensus
    # "independent" or "iterative". Iterative mode casts a single vote, so it
    # needs consensus_quorum and min_reviewers of 1.
    consensus_mode: str = "independent"
    consensus_threshold: float = 0.95
    consensus_quorum: int = 2
    min_reviewers: int = 2
    consensus_max_iterations: int = 3
    reviewer_providers: list[ReviewerProviderConfig] = DEFAULT_REVIEWER_PROVIDERS
    reviewer_timeout_seconds: float = 120.0

    # Timeouts
    run_timeout_seconds: float | None = None
    start_check_timeout_seconds: float = 15.0
    run_start_check: bool = True

    # Command overrides, applied on top of auto-detected commands
    build_command: str | None = None
    test_command: str | None = None
    lint_command: str | None = None
    typecheck_command: str | None = None
    migrations_command: str | None = None
    start_command: str | None = None

    # "module:callable" returning a Collaborators bundle
    collaborators: str = ""

    @model_validator(mode="after")
    def _check_iterative_quorum(self) -> PhasegateConfig:
        if self.consensus_mode == "iterative" and max(self.consensus_quorum, self.min_reviewers) > 1:
            raise ValueError(
                "consensus_mode='iterative' casts one vote; set consensus_quorum and "
                f"min_reviewers to 1 (got {self.consensus_quorum} and {self.min_reviewers})"
            )
        return self

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"

    def command_overrides(self) -> dict[str, str]:
        """Non-empty command overrides keyed by ResolvedCommands field name."""
        raw = {
            "build": self.build_command,
            "test": self.test_command,
            "lint": self.lint_command,
            "typecheck": self.typecheck_command,
            "migrations": self.migrations_command,
            "start": self.start_command,
        }
        return {k: v for k, v in raw.items() if v}


# Module-level singleton: import as `from phasegate.config import config`
config = PhasegateConfig()
