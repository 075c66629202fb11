"""
Remote Images Configuration

FetchConfig is resolved once per build from the user's plugin options
and is read-only afterwards. Options are accepted either in their
camelCase spelling (typeName, sourceField, targetPath, ...) or in
snake_case.
"""

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import InvalidOptionsError
from .path_resolver import split_field_path

DEFAULT_TARGET_PATH = "src/assets/remoteImages"
DEFAULT_SOURCE_ROOT = "src"
DEFAULT_TIMEOUT = 30.0

# Flat option keys that belong to the nested url_normalization block
_NORMALIZATION_KEYS = {
    "forceHttps": "force_https",
    "force_https": "force_https",
    "normalizeProtocol": "normalize_protocol",
    "normalize_protocol": "normalize_protocol",
    "defaultProtocol": "default_protocol",
    "default_protocol": "default_protocol",
}


class UrlNormalization(BaseModel):
    """How image URLs are canonicalized before use."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    force_https: bool = Field(False, alias="forceHttps", description="Rewrite http:// to https://")
    normalize_protocol: bool = Field(
        True, alias="normalizeProtocol", description="Give protocol-relative URLs a protocol"
    )
    default_protocol: str = Field(
        "http:", alias="defaultProtocol", description="Protocol for URLs that have none"
    )

    @field_validator("default_protocol")
    @classmethod
    def _check_protocol(cls, value: str) -> str:
        value = value.strip().lower()
        if not value.endswith(":"):
            value += ":"
        if value not in ("http:", "https:"):
            raise ValueError("defaultProtocol must be 'http:' or 'https:'")
        return value


class FetchConfig(BaseModel):
    """Settings for locating and downloading remote images."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    # Required
    type_name: str = Field(..., alias="typeName", min_length=1, description="Collection to process")
    source_field: str = Field(
        ..., alias="sourceField", min_length=1, description="Dotted path to the image field"
    )

    # Download behaviour
    cache: bool = Field(True, description="Skip downloads when the target file exists")
    original: bool = Field(False, description="Keep the remote file name and directory")
    target_path: str = Field(
        DEFAULT_TARGET_PATH, alias="targetPath", min_length=1, description="Download directory"
    )
    download_from_local_network: bool = Field(
        False, alias="downloadFromLocalNetwork", description="Allow loopback/private hosts"
    )
    fallback_image: Optional[str] = Field(
        None, alias="fallbackImage", description="Value written when a download fails"
    )
    url_normalization: UrlNormalization = Field(
        default_factory=UrlNormalization, alias="urlNormalization"
    )
    strict_leaf_types: bool = Field(
        False, alias="strictLeafTypes", description="Fail the build on non-string, non-array leaves"
    )

    # Project layout
    project_root: Path = Field(default_factory=Path.cwd, alias="projectRoot")
    source_root: str = Field(
        DEFAULT_SOURCE_ROOT, alias="sourceRoot", description="Returned paths are relative to this"
    )

    # HTTP
    timeout: float = Field(DEFAULT_TIMEOUT, gt=0, description="Request timeout in seconds")

    @field_validator("type_name")
    @classmethod
    def _check_type_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("can't be blank")
        return value.strip()

    @field_validator("source_field")
    @classmethod
    def _check_source_field(cls, value: str) -> str:
        value = value.strip()
        if not value or any(not segment for segment in value.split(".")):
            raise ValueError("must be a dotted path of non-empty keys")
        return value

    @property
    def field_path(self) -> Tuple[str, ...]:
        """source_field split into its path segments."""
        return split_field_path(self.source_field)

    @property
    def target_dir(self) -> Path:
        return self.project_root / self.target_path

    @property
    def source_dir(self) -> Path:
        return self.project_root / self.source_root

    @classmethod
    def from_options(cls, options: Optional[Mapping[str, Any]]) -> "FetchConfig":
        """
        Build a config from raw plugin options.

        Raises:
            InvalidOptionsError: listing every problem found.
        """
        data: Dict[str, Any] = dict(options or {})

        normalization = dict(data.pop("urlNormalization", None) or data.pop("url_normalization", None) or {})
        for key, field_name in _NORMALIZATION_KEYS.items():
            if key in data:
                normalization[field_name] = data.pop(key)
        data["url_normalization"] = normalization

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise InvalidOptionsError(_format_errors(e)) from e


def _format_errors(error: ValidationError):
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "options"
        problems.append(f"{location} {item['msg']}")
    return problems


def timeout_from_env(default: float = DEFAULT_TIMEOUT) -> float:
    """Request timeout override from REMOTE_IMAGES_TIMEOUT."""
    raw = os.getenv("REMOTE_IMAGES_TIMEOUT")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default
