"""Application configuration loaded from a KEY=VALUE file and environment variables."""

from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL, make_url

from syncher.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "migration-syncher.env"

# Marker for "not applicable" in the configuration file, equivalent to an empty value.
NOT_APPLICABLE = "n.a."

_OPTIONAL_FIELDS = (
    "db_url",
    "db_password",
    "db_search_path",
    "git_remote_repository_url",
    "git_user",
    "git_password",
    "git_certificate",
    "git_key",
)


class Settings(BaseSettings):
    """Migration syncher settings.

    Values are read from the env file passed as ``_env_file``; environment
    variables with the same (case-insensitive) name take precedence.
    """

    model_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False

    # Target database
    db_url: str | None = None
    db_driver: str = "postgresql+psycopg"
    db_host: str = "localhost"
    db_port: int = Field(default=5432, ge=1, le=65535)
    db_name: str = "postgres"
    db_user: str = "postgres"
    db_password: str | None = None
    db_syncher_schema: str = Field(default="migration_syncher", pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    db_search_path: str | None = None
    db_initial_sql: str = ""

    # Git repository
    git_local_repository: Path = Path("./repository")
    git_remote_repository_url: str | None = None
    git_user: str | None = None
    git_password: str | None = None
    git_certificate: str | None = None
    git_key: str | None = None
    git_ssl_verify: bool = True
    git_branch: str = "master"

    # Comma separated directories relative to the repository root; empty or "*" means all.
    include_directories: str = ""

    @field_validator(*_OPTIONAL_FIELDS, mode="before")
    @classmethod
    def _not_applicable_to_none(cls, value: object) -> object:
        if isinstance(value, str):
            value = value.strip()
            if value == "" or value.lower() == NOT_APPLICABLE or value.lower() == "null":
                return None
        return value

    @field_validator("db_initial_sql", "include_directories", "git_branch", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @property
    def database_url(self) -> URL:
        """SQLAlchemy URL of the target database."""
        if self.db_url is not None:
            return make_url(self.db_url)
        return URL.create(
            self.db_driver,
            username=self.db_user,
            password=self.db_password,
            host=self.db_host,
            port=self.db_port,
            database=self.db_name.lower(),
        )

    @property
    def include_directory_list(self) -> tuple[str, ...]:
        """Normalized include directories; empty means every path passes."""
        raw = self.include_directories
        if not raw or raw == "*":
            return ()
        dirs: list[str] = []
        for part in raw.split(","):
            normalized = PurePosixPath(part.strip().strip("/")).as_posix()
            if normalized in ("", "."):
                # The repository root includes everything.
                return ()
            if normalized not in dirs:
                dirs.append(normalized)
        return tuple(dirs)


def load_settings(config_path: Path) -> Settings:
    """Load settings from *config_path*, wrapping failures in ConfigurationError."""
    if not config_path.is_file():
        raise ConfigurationError(f"Configuration file not found: {config_path}")
    try:
        return Settings(_env_file=config_path)  # type: ignore[call-arg]
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigurationError(f"Cannot read configuration file {config_path}: {exc}") from exc
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration in {config_path}: {exc}") from exc


_INITIAL_CONFIG = """\
# Migration syncher configuration.
#
# Every key can be overridden by an environment variable with the same name.
# Use "n.a." or leave a value empty for settings that do not apply.

# Target database. DB_URL, when set, is a full SQLAlchemy URL that takes
# precedence over the separate DB_* connection settings.
DB_URL=n.a.
DB_HOST=localhost
DB_PORT=5432
DB_NAME=postgres
DB_USER=postgres
DB_PASSWORD=n.a.

# Schema that holds the syncher administration tables
# (last_commit, failed_file and file_execution_log).
DB_SYNCHER_SCHEMA=migration_syncher

# search_path issued before every executed file, e.g. "my_schema, public".
DB_SEARCH_PATH=n.a.

# Statement executed once after connecting.
DB_INITIAL_SQL=

# Local clone of the repository. It is cloned from GIT_REMOTE_REPOSITORY_URL
# when it does not exist yet and pulled on every run otherwise.
GIT_LOCAL_REPOSITORY=./repository
GIT_REMOTE_REPOSITORY_URL=n.a.
GIT_BRANCH=master
GIT_USER=n.a.
GIT_PASSWORD=n.a.
GIT_CERTIFICATE=n.a.
GIT_KEY=n.a.
GIT_SSL_VERIFY=true

# Comma separated list of directories (relative to the repository root) whose
# files are executed. Empty or "*" means all files.
INCLUDE_DIRECTORIES=*

DEBUG=false
"""


def generate_initial_config() -> str:
    """Return the content of a commented default configuration file."""
    return _INITIAL_CONFIG


def write_initial_config(config_path: Path) -> None:
    """Write the default configuration file, creating parent directories."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(generate_initial_config(), encoding="utf-8")
    logger.info("Created example configuration file: %s", config_path.resolve())
