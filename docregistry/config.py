"""
Configuration for the document registry.

Supports loading from:
1. Environment variables (highest priority)
2. YAML config file
3. Default values (fallback)
"""

import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field


class RegistryConfig(BaseModel):
    """Registry persistence configuration."""

    path: str = "machine-data/project-document-registry.json"
    documents_root: str = "project-documents"
    history_path: str | None = None  # routing counters; default: next to the registry


class TokenizerConfig(BaseModel):
    """
    Token accounting configuration.

    One tokenizer is used for every count in a registry instance so that
    savings percentages stay comparable across entries.
    """

    provider: str = "tiktoken"  # tiktoken, approximate
    model: str = "cl100k_base"  # tiktoken encoding name
    chars_per_token: float = Field(default=4.0, gt=0)


class ConverterConfig(BaseModel):
    """Markdown to JSON twin conversion configuration."""

    target_ratio: float = Field(default=0.15, gt=0, le=1.0)
    max_key_points: int = Field(default=3, ge=0)
    preview_chars: int = Field(default=120, ge=0)
    summary_words: int = Field(default=25, ge=1)
    write_twins: bool = True
    twin_dir: str = "machine-data/project-documents-json"


class RoutingRuleConfig(BaseModel):
    """User-supplied Tier 2 routing rule."""

    name: str
    category: str
    pattern: str | None = None  # regex searched in filename and content
    globs: list[str] = Field(default_factory=list)  # filename globs ("*-design.md")
    keywords: list[str] = Field(default_factory=list)
    priority: int = 0
    min_matches: int = Field(default=1, ge=1)
    filename_only: bool = False


class RouterConfig(BaseModel):
    """Tiered router configuration."""

    # Monitoring targets per tier in milliseconds, never hard timeouts
    tier_budgets_ms: dict[int, float] = Field(
        default_factory=lambda: {1: 10.0, 2: 20.0, 3: 40.0, 4: 100.0}
    )
    known_documents: dict[str, str] = Field(default_factory=dict)
    rules: list[RoutingRuleConfig] = Field(default_factory=list)
    replace_default_rules: bool = False


class ClassifierConfig(BaseModel):
    """External classifier (Tier 3) configuration."""

    provider: str = "none"  # none, ollama, openai
    model: str = "llama3.1:8b"
    base_url: str = "http://localhost:11434"
    api_key: str | None = None
    temperature: float = 0.0
    max_tokens: int = 200
    timeout: float = 10.0
    confidence_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    max_chars: int = 4000


class FolderConfig(BaseModel):
    """Folder creation and deduplication configuration."""

    similarity_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    max_slug_words: int = Field(default=4, ge=1)
    create_directories: bool = True


class ValidationConfig(BaseModel):
    """Document health validation configuration."""

    incomplete_markers: list[str] = Field(default_factory=lambda: ["TODO", "FIXME", "TBD", "XXX"])
    required_sections: list[str] = Field(default_factory=list)


class LifecycleConfig(BaseModel):
    """Import and validation batch configuration."""

    max_workers: int | None = None  # defaults to os.cpu_count()
    include_patterns: list[str] = Field(default_factory=lambda: ["*.md"])
    exclude_dirs: list[str] = Field(
        default_factory=lambda: [".git", "node_modules", "__pycache__"]
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    log_to_file: bool = False
    log_dir: str = "logs"
    file_rotation: str = "10 MB"
    file_retention: str = "7 days"
    compression: str = "zip"
    serialize: bool = True


class Config(BaseModel):
    """Main configuration."""

    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    tokenizer: TokenizerConfig = Field(default_factory=TokenizerConfig)
    converter: ConverterConfig = Field(default_factory=ConverterConfig)
    router: RouterConfig = Field(default_factory=RouterConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    folders: FolderConfig = Field(default_factory=FolderConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    lifecycle: LifecycleConfig = Field(default_factory=LifecycleConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls, env_file: str | Path | None = None) -> "Config":
        """
        Load configuration from environment variables.

        Priority: .env file -> system environment variables -> defaults

        Args:
            env_file: Optional path to .env file (default: .env in working directory)

        Returns:
            Config instance

        Environment variables:
            DOCREG_REGISTRY_PATH: Registry JSON file
            DOCREG_DOCUMENTS_ROOT: Project documents root
            DOCREG_HISTORY_PATH: Routing history sidecar (default: next to the registry)
            DOCREG_TOKENIZER_PROVIDER: tiktoken or approximate
            DOCREG_TOKENIZER_MODEL: tiktoken encoding name
            DOCREG_CONVERTER_TARGET_RATIO: JSON/MD token target
            DOCREG_CONVERTER_WRITE_TWINS: Write twin files on import
            DOCREG_CLASSIFIER_PROVIDER: none, ollama, openai
            DOCREG_CLASSIFIER_MODEL: Classifier model name
            DOCREG_CLASSIFIER_API_KEY: API key (for OpenAI)
            DOCREG_CLASSIFIER_THRESHOLD: Minimum Tier 3 confidence
            DOCREG_FOLDER_SIMILARITY: Folder deduplication threshold
            DOCREG_MAX_WORKERS: Conversion worker pool size
            DOCREG_LOG_LEVEL: Log level
        """
        if env_file:
            load_dotenv(env_file)
        elif Path(".env").exists():
            load_dotenv()

        def get_env(key: str, default: Any = None) -> Any:
            """Get environment variable with type conversion."""
            value = os.getenv(key)
            if value is None or value == "":
                return default
            if isinstance(default, bool):
                return str(value).lower() in ("true", "1", "yes")
            if isinstance(default, int):
                return int(value)
            if isinstance(default, float):
                return float(value)
            return value

        max_workers = get_env("DOCREG_MAX_WORKERS")

        return cls(
            registry=RegistryConfig(
                path=get_env("DOCREG_REGISTRY_PATH", RegistryConfig().path),
                documents_root=get_env("DOCREG_DOCUMENTS_ROOT", RegistryConfig().documents_root),
                history_path=get_env("DOCREG_HISTORY_PATH"),
            ),
            tokenizer=TokenizerConfig(
                provider=get_env("DOCREG_TOKENIZER_PROVIDER", "tiktoken"),
                model=get_env("DOCREG_TOKENIZER_MODEL", "cl100k_base"),
                chars_per_token=get_env("DOCREG_TOKENIZER_CHARS_PER_TOKEN", 4.0),
            ),
            converter=ConverterConfig(
                target_ratio=get_env("DOCREG_CONVERTER_TARGET_RATIO", 0.15),
                write_twins=get_env("DOCREG_CONVERTER_WRITE_TWINS", True),
                twin_dir=get_env("DOCREG_CONVERTER_TWIN_DIR", ConverterConfig().twin_dir),
            ),
            classifier=ClassifierConfig(
                provider=get_env("DOCREG_CLASSIFIER_PROVIDER", "none"),
                model=get_env("DOCREG_CLASSIFIER_MODEL", "llama3.1:8b"),
                base_url=get_env("DOCREG_CLASSIFIER_BASE_URL", "http://localhost:11434"),
                api_key=get_env("DOCREG_CLASSIFIER_API_KEY"),
                timeout=get_env("DOCREG_CLASSIFIER_TIMEOUT", 10.0),
                confidence_threshold=get_env("DOCREG_CLASSIFIER_THRESHOLD", 0.6),
            ),
            folders=FolderConfig(
                similarity_threshold=get_env("DOCREG_FOLDER_SIMILARITY", 0.8),
                create_directories=get_env("DOCREG_FOLDER_CREATE_DIRECTORIES", True),
            ),
            lifecycle=LifecycleConfig(
                max_workers=int(max_workers) if max_workers is not None else None,
            ),
            logging=LoggingConfig(
                level=get_env("DOCREG_LOG_LEVEL", "INFO"),
                log_to_file=get_env("DOCREG_LOG_TO_FILE", False),
                log_dir=get_env("DOCREG_LOG_DIR", "logs"),
                file_rotation=get_env("DOCREG_LOG_FILE_ROTATION", "10 MB"),
                file_retention=get_env("DOCREG_LOG_FILE_RETENTION", "7 days"),
                compression=get_env("DOCREG_LOG_COMPRESSION", "zip"),
                serialize=get_env("DOCREG_LOG_SERIALIZE", True),
            ),
        )

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> "Config":
        """
        Load configuration from YAML file.

        Args:
            yaml_path: Path to YAML configuration file

        Returns:
            Config instance

        Raises:
            FileNotFoundError: If YAML file doesn't exist
            yaml.YAMLError: If YAML is invalid
        """
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Config file not found: {yaml_path}")

        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def from_env_or_yaml(
        cls, yaml_path: str | Path | None = None, env_file: str | Path | None = None
    ) -> "Config":
        """
        Load configuration with priority: env vars > YAML > defaults.

        Args:
            yaml_path: Optional path to YAML config
            env_file: Optional path to .env file

        Returns:
            Config instance
        """
        if yaml_path and Path(yaml_path).exists():
            with open(yaml_path) as f:
                config_dict = yaml.safe_load(f) or {}
        else:
            config_dict = {}

        env_config = cls.from_env(env_file=env_file)

        # Env sections that differ from defaults override YAML sections
        final_dict = {**config_dict}
        default = cls()
        for section in (
            "registry",
            "tokenizer",
            "converter",
            "classifier",
            "folders",
            "lifecycle",
            "logging",
        ):
            env_section = getattr(env_config, section)
            if env_section != getattr(default, section):
                merged = {**config_dict.get(section, {})}
                default_section = getattr(default, section).model_dump()
                for key, value in env_section.model_dump().items():
                    if value != default_section[key]:
                        merged[key] = value
                final_dict[section] = merged

        return cls(**final_dict) if final_dict else env_config

