"""Configuration management for the release signing toolkit."""

import json
from pathlib import Path

import click
import yaml
from pydantic import BaseModel, Field, field_validator


APP_NAME = "relsign"
KEY_DIR_ENV_VAR = "RELSIGN_KEY_DIR"
SCRYPT_MAX_LOG_N = 24


def default_key_directory() -> str:
    """Per-user directory holding the protected private keys."""
    return str(Path(click.get_app_dir(APP_NAME)) / "keys")


class StorageConfig(BaseModel):
    """Private key storage configuration."""

    key_directory: str = Field(default_factory=default_key_directory)
    key_extension: str = ".bin"

    @field_validator("key_extension")
    @classmethod
    def _dotted_extension(cls, value: str) -> str:
        if not value.startswith(".") or len(value) < 2 or "/" in value or "\\" in value:
            raise ValueError(f"key_extension must look like '.bin', got {value!r}")
        return value


class ProtectionConfig(BaseModel):
    """At-rest protection of private keys."""

    backend: str = "auto"  # auto, keyring, password
    keyring_service: str = APP_NAME
    scrypt_n: int = 2**15
    scrypt_r: int = 8
    scrypt_p: int = 1

    @field_validator("backend")
    @classmethod
    def _known_backend(cls, value: str) -> str:
        value = value.lower()
        if value not in ("auto", "keyring", "password"):
            raise ValueError(f"Unknown protection backend: {value}")
        return value

    @field_validator("scrypt_n")
    @classmethod
    def _power_of_two(cls, value: int) -> int:
        # Stored as log2 in one header byte
        if value < 2 or value & (value - 1) or value.bit_length() - 1 > SCRYPT_MAX_LOG_N:
            raise ValueError(f"scrypt_n must be a power of two between 2 and 2**{SCRYPT_MAX_LOG_N}")
        return value

    @field_validator("scrypt_r", "scrypt_p")
    @classmethod
    def _fits_in_byte(cls, value: int) -> int:
        if not 1 <= value <= 255:
            raise ValueError("scrypt_r and scrypt_p must be between 1 and 255")
        return value


class SignerConfig(BaseModel):
    """Complete toolkit configuration."""

    storage: StorageConfig = StorageConfig()
    protection: ProtectionConfig = ProtectionConfig()

    @property
    def key_directory(self) -> Path:
        return Path(self.storage.key_directory).expanduser()

    def with_key_directory(self, key_directory: Path) -> "SignerConfig":
        """Return a copy whose key storage root is ``key_directory``."""
        storage = self.storage.model_copy(update={"key_directory": str(key_directory)})
        return self.model_copy(update={"storage": storage})


def load_config(config_path: Path) -> SignerConfig:
    """Load configuration from file.

    Supports YAML and JSON formats.

    Args:
        config_path: Path to configuration file

    Returns:
        SignerConfig object
    """
    with open(config_path) as f:
        if config_path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(f)
        elif config_path.suffix == ".json":
            data = json.load(f)
        else:
            raise ValueError(f"Unsupported config format: {config_path.suffix}")

    return SignerConfig(**(data or {}))


def generate_default_config(format: str = "yaml") -> str:
    """Generate default configuration content.

    Args:
        format: Output format ("yaml" or "json")

    Returns:
        Configuration file content as string
    """
    data = SignerConfig().model_dump()

    if format == "yaml":
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    elif format == "json":
        return json.dumps(data, indent=2)
    else:
        raise ValueError(f"Unsupported format: {format}")
