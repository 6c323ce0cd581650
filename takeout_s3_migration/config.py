"""
Configuration management using dataclasses for type safety and validation.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any
import yaml
import json
import os
import jsonschema
import logging

from takeout_s3_migration.exceptions import ConfigurationError
from takeout_s3_migration.utils.retry import RetryConfig

logger = logging.getLogger(__name__)


@dataclass
class S3Config:
    """S3-compatible destination configuration."""
    bucket: str = ""
    endpoint: str = ""
    region: str = "us-east-1"
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    use_ssl: bool = True
    prefix: str = ""
    disable_checksums: bool = False

    def __post_init__(self):
        """Apply environment variable overrides."""
        if not self.access_key:
            self.access_key = os.getenv('S3_ACCESS_KEY')
        if not self.secret_key:
            self.secret_key = os.getenv('S3_SECRET_KEY')
        if not self.endpoint:
            self.endpoint = os.getenv('S3_ENDPOINT', '')
        if not self.bucket:
            self.bucket = os.getenv('S3_BUCKET', '')

    def validate(self) -> None:
        """Check the settings needed to connect."""
        if not self.bucket:
            raise ConfigurationError("S3 bucket name is required")
        if bool(self.access_key) != bool(self.secret_key):
            raise ConfigurationError("S3 access key and secret key must be given together")

    @property
    def endpoint_url(self) -> Optional[str]:
        """Endpoint with a scheme, or None to use the AWS default."""
        if not self.endpoint:
            return None
        if self.endpoint.startswith(('http://', 'https://')):
            return self.endpoint
        scheme = 'https' if self.use_ssl else 'http'
        return f"{scheme}://{self.endpoint}"


@dataclass
class UploadConfig:
    """Upload behaviour."""
    concurrency: int = 4
    max_concurrent_archives: int = 3
    dry_run: bool = False
    resume: bool = True
    journal_path: Optional[str] = None
    preserve_metadata: bool = True
    skip_existing: bool = True
    file_timeout: float = 30 * 60
    journal_save_interval: float = 30.0
    journal_batch_size: int = 100
    periodic_save_interval: float = 5 * 60
    show_progress: bool = False

    def __post_init__(self):
        """Validate upload configuration."""
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if self.max_concurrent_archives < 1:
            raise ValueError("max_concurrent_archives must be at least 1")
        if self.file_timeout <= 0:
            raise ValueError("file_timeout must be positive")
        if self.journal_batch_size < 1:
            raise ValueError("journal_batch_size must be at least 1")
        if self.journal_save_interval < 0 or self.periodic_save_interval <= 0:
            raise ValueError("journal save intervals must be positive")


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = None
    json: bool = False

    def __post_init__(self):
        """Validate logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.level.upper() not in valid_levels:
            raise ValueError(f"Invalid logging level: {self.level}. Must be one of {valid_levels}")


@dataclass
class MigrationConfig:
    """Main migration configuration."""
    s3: S3Config = field(default_factory=S3Config)
    upload: UploadConfig = field(default_factory=UploadConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, config_path: str, validate: bool = True) -> 'MigrationConfig':
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to YAML configuration file
            validate: Whether to validate against JSON schema

        Returns:
            MigrationConfig instance
        """
        return cls.from_dict(cls.load_yaml_dict(config_path, validate))

    @classmethod
    def load_yaml_dict(cls, config_path: str, validate: bool = True) -> Dict[str, Any]:
        """Read, validate and apply environment overrides to a YAML file without building the config."""
        try:
            with open(config_path, 'r') as f:
                config_dict = yaml.safe_load(f)
        except (yaml.YAMLError, IOError, OSError) as e:
            raise ValueError(f"Failed to load configuration file '{config_path}': {e}") from e

        if config_dict is None:
            raise ValueError(f"Configuration file '{config_path}' is empty or invalid")

        if validate:
            cls._validate_schema(config_dict)

        return cls._apply_env_overrides(config_dict)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'MigrationConfig':
        """
        Create configuration from dictionary.

        Args:
            config_dict: Configuration dictionary

        Returns:
            MigrationConfig instance
        """
        s3_dict = config_dict.get('s3', {}) or {}
        upload_dict = config_dict.get('upload', {}) or {}
        retry_dict = dict(config_dict.get('retry', {}) or {})
        logging_dict = config_dict.get('logging', {}) or {}

        if 'retryable_errors' in retry_dict:
            retry_dict['retryable_errors'] = frozenset(retry_dict['retryable_errors'])

        return cls(
            s3=S3Config(**s3_dict),
            upload=UploadConfig(**upload_dict),
            retry=RetryConfig(**retry_dict),
            logging=LoggingConfig(**logging_dict),
        )

    @staticmethod
    def _validate_schema(config_dict: Dict[str, Any]) -> None:
        """Validate configuration against JSON schema."""
        try:
            schema_path = Path(__file__).parent / 'config_schema.json'
            if schema_path.exists():
                with open(schema_path, 'r') as f:
                    schema = json.load(f)

                jsonschema.validate(instance=config_dict, schema=schema)
                logger.debug("Configuration validated against schema")
        except jsonschema.ValidationError as e:
            raise ValueError(
                f"Configuration validation failed: {e.message}\n"
                f"Path: {'.'.join(str(p) for p in e.path)}"
            ) from e
        except (IOError, OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not load configuration schema for validation: {e}")

    @staticmethod
    def _apply_env_overrides(config_dict: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration dictionary."""
        config = json.loads(json.dumps(config_dict))

        if 's3' not in config or config['s3'] is None:
            config['s3'] = {}

        env_map = {
            'S3_ACCESS_KEY': 'access_key',
            'S3_SECRET_KEY': 'secret_key',
            'S3_ENDPOINT': 'endpoint',
            'S3_BUCKET': 'bucket',
        }
        for env_name, key in env_map.items():
            value = os.getenv(env_name)
            if value:
                config['s3'][key] = value

        return config
