"""Application configuration using pydantic-settings."""

import functools
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


def _find_project_root() -> Path:
    """Find project root by locating pyproject.toml."""
    current = Path(__file__).resolve()
    for parent in [current] + list(current.parents):
        if (parent / "pyproject.toml").exists():
            return parent
    return Path(__file__).resolve().parent.parent.parent


class YamlSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that loads from settings.yaml."""

    def get_field_value(self, field_name: str) -> tuple[Any, str, bool]:
        """Not used - we implement __call__ instead."""
        return None, "", False

    def __call__(self) -> dict[str, Any]:
        """Load settings from YAML file."""
        yaml_path = _find_project_root() / "config" / "settings.yaml"
        if not yaml_path.exists():
            return {}

        with open(yaml_path, encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        # Flatten nested structure to match Settings field names
        flattened = {}
        if 'server' in data:
            flattened['host'] = data['server'].get('host')
            flattened['port'] = data['server'].get('port')
        if 'database' in data:
            flattened['database_url'] = data['database'].get('url')
            flattened['database_echo'] = data['database'].get('echo')
        if 'progress' in data:
            progress = data['progress']
            flattened['daily_question_threshold'] = progress.get('daily_question_threshold')
            flattened['xp_per_correct'] = progress.get('xp_per_correct')
            flattened['xp_per_incorrect'] = progress.get('xp_per_incorrect')
            flattened['max_answered_questions'] = progress.get('max_answered_questions')
            flattened['remote_save_delay_seconds'] = progress.get('remote_save_delay_seconds')
            flattened['achievements_file'] = progress.get('achievements_file')
            flattened['max_live_progress_engines'] = progress.get('max_live_engines')
        if 'leaderboard' in data:
            leaderboard = data['leaderboard']
            flattened['leaderboard_max_members'] = leaderboard.get('max_members')
            flattened['leaderboard_name_max_length'] = leaderboard.get('name_max_length')
            flattened['rank_window_radius'] = leaderboard.get('rank_window_radius')
            flattened['global_overfetch_factor'] = leaderboard.get('global_overfetch_factor')
            flattened['full_ranking_limit'] = leaderboard.get('full_ranking_limit')

        # Remove None values
        return {k: v for k, v in flattened.items() if v is not None}


class Settings(BaseSettings):
    """Application settings loaded from environment and config files."""

    model_config = SettingsConfigDict(
        env_prefix="STUDYRANK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Progress engine
    daily_question_threshold: int = Field(default=5, ge=1)
    xp_per_correct: int = Field(default=10, ge=0)
    xp_per_incorrect: int = Field(default=5, ge=0)
    max_answered_questions: int = Field(default=10000, ge=1)
    remote_save_delay_seconds: float = Field(default=10.0, ge=0.0)
    achievements_file: Path | None = Field(default=None)
    max_live_progress_engines: int = Field(default=1000, ge=1)

    # Leaderboards
    leaderboard_max_members: int = Field(default=50, ge=1)
    leaderboard_name_max_length: int = Field(default=100, ge=1)
    rank_window_radius: int = Field(default=2, ge=0)
    global_overfetch_factor: int = Field(default=2, ge=1)
    full_ranking_limit: int = Field(default=10000, ge=1)

    # Database
    database_url: str | None = Field(default=None)
    database_echo: bool = Field(default=False)

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Paths
    project_root: Path = Field(default_factory=_find_project_root)

    @property
    def data_dir(self) -> Path:
        d = self.project_root / "data"
        d.mkdir(parents=True, exist_ok=True)
        return d

    @property
    def progress_cache_dir(self) -> Path:
        d = self.data_dir / "progress"
        d.mkdir(parents=True, exist_ok=True)
        return d

    @property
    def resolved_database_url(self) -> str:
        """Configured database URL, defaulting to a SQLite file under data/."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.data_dir / 'studyrank.db'}"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customise settings sources to include YAML file.

        Priority order (highest to lowest):
        1. init_settings (arguments passed to Settings())
        2. env_settings (environment variables)
        3. dotenv_settings (.env file)
        4. YamlSettingsSource (settings.yaml)
        5. file_secret_settings
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlSettingsSource(settings_cls),
            file_secret_settings,
        )


@functools.lru_cache
def get_settings() -> Settings:
    """Get application settings singleton."""
    return Settings()


def load_achievement_definitions(path: Path) -> list[dict]:
    """Load raw achievement definitions from a YAML file."""
    if not path.exists():
        raise FileNotFoundError(f"Achievements file not found: {path}")
    with open(path, encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}
    return data.get('achievements', [])
