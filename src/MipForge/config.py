"""Define typed configuration models for the image importer.

Use `ImporterConfig` to load, validate, and persist runtime settings.
"""

import os
import logging
import yaml
from dataclasses import dataclass, field
from typing import List

from .core.codec import FILTER_METHODS

logger = logging.getLogger("mipforge.config")

LEVEL_FAILURE_POLICIES = ("placeholder", "fail")


@dataclass
class DecodeConfig:
    """Store settings for decoding and the optional target-size rescale."""

    max_image_pixels: int = 67108864  # 8192x8192, 0 = unlimited
    flip_vertical: bool = False
    extension_fallback: bool = True
    rescale_filter: str = "lanczos"


@dataclass
class MipmapConfig:
    """Store settings for mip chain generation."""

    enabled: bool = True
    filter_method: str = "lanczos"
    max_workers: int = 0  # 0 = one per CPU
    # "placeholder": failed level becomes an empty entry; "fail": whole import fails
    level_failure_policy: str = "placeholder"
    sharpen_mips: bool = False
    sharpen_levels: List[int] = field(default_factory=lambda: [1, 2, 3])
    sharpen_strength: float = 0.3
    sharpen_radius: float = 1.0


_SUPPORTED_CONFIG_VERSION = 1


@dataclass
class ImporterConfig:
    """Master importer configuration."""

    config_version: int = 1
    log_level: str = "INFO"
    max_workers: int = 4  # concurrent asynchronous imports
    engine_texture_ext: str = ".texture"

    decode: DecodeConfig = field(default_factory=DecodeConfig)
    mipmap: MipmapConfig = field(default_factory=MipmapConfig)

    @classmethod
    def from_yaml(cls, path: str) -> "ImporterConfig":
        """Load importer configuration from YAML or return defaults."""
        if not os.path.exists(path):
            logger.info("Config file '%s' not found. Using defaults.", path)
            config = cls()
            config.validate()
            return config
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(
                f"Failed to parse YAML config '{path}': {exc}"
            ) from exc
        if not isinstance(data, dict):
            raise ValueError(
                f"Config file '{path}' must contain a YAML mapping, "
                f"got {type(data).__name__}"
            )
        yaml_version = data.get("config_version", 1)
        if isinstance(yaml_version, int) and yaml_version > _SUPPORTED_CONFIG_VERSION:
            logger.warning(
                "Config file '%s' has config_version=%d, but this build only "
                "supports up to version %d. Some settings may be ignored.",
                path, yaml_version, _SUPPORTED_CONFIG_VERSION,
            )
        config = cls()
        _merge_dict_to_dataclass(config, data)
        try:
            config.validate()
        except ValueError as exc:
            raise ValueError(f"{path}: {exc}") from exc
        return config

    def to_yaml(self, path: str):
        """Write importer configuration to a YAML file."""
        import dataclasses
        import threading as _th
        data = dataclasses.asdict(self)
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        ext = os.path.splitext(path)[1]
        tmp_path = f"{path}.tmp.{os.getpid()}.{_th.get_ident()}{ext}"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                yaml.dump(data, f, default_flow_style=False, sort_keys=False)
            os.replace(tmp_path, path)
        finally:
            if os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError:
                    pass

    def validate(self):
        """Validate configuration values. Raises ValueError on invalid config."""
        errors = []

        valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if str(self.log_level).upper() not in valid_log_levels:
            errors.append(
                f"log_level must be one of {sorted(valid_log_levels)}, "
                f"got '{self.log_level}'"
            )
        if self.max_workers < 1:
            errors.append("max_workers must be >= 1")
        if self.max_workers > 128:
            errors.append("max_workers must be <= 128")
        ext = self.engine_texture_ext
        if not ext or not ext.startswith(".") or len(ext) < 2:
            errors.append(
                f"engine_texture_ext must start with '.', got '{self.engine_texture_ext}'"
            )

        # Decode
        if self.decode.max_image_pixels < 0:
            errors.append("decode.max_image_pixels must be >= 0 (0 = unlimited)")
        if self.decode.rescale_filter not in FILTER_METHODS:
            errors.append(
                f"decode.rescale_filter must be one of {sorted(FILTER_METHODS)}, "
                f"got '{self.decode.rescale_filter}'"
            )

        # Mipmap
        if self.mipmap.filter_method not in FILTER_METHODS:
            errors.append(
                f"mipmap.filter_method must be one of {sorted(FILTER_METHODS)}, "
                f"got '{self.mipmap.filter_method}'"
            )
        if not (0 <= self.mipmap.max_workers <= 128):
            errors.append("mipmap.max_workers must be in [0, 128] (0 = auto)")
        if self.mipmap.level_failure_policy not in LEVEL_FAILURE_POLICIES:
            errors.append(
                f"mipmap.level_failure_policy must be one of "
                f"{list(LEVEL_FAILURE_POLICIES)}, got '{self.mipmap.level_failure_policy}'"
            )
        if self.mipmap.sharpen_strength < 0:
            errors.append("mipmap.sharpen_strength must be >= 0")
        if self.mipmap.sharpen_radius <= 0:
            errors.append("mipmap.sharpen_radius must be > 0")
        if any(not isinstance(lvl, int) or lvl < 1 for lvl in self.mipmap.sharpen_levels):
            errors.append("mipmap.sharpen_levels must contain integers >= 1")

        # --- Cross-field validation warnings (non-fatal) ---
        if self.mipmap.sharpen_mips and self.mipmap.filter_method == "nearest":
            logger.warning(
                "mipmap.sharpen_mips is enabled with the 'nearest' filter; "
                "sharpening point-sampled mips amplifies aliasing."
            )

        if errors:
            raise ValueError(
                "Configuration validation failed:\n" +
                "\n".join(f"  - {e}" for e in errors)
            )


def _merge_dict_to_dataclass(obj, data: dict, _path: str = ""):
    import dataclasses
    for key, value in data.items():
        if hasattr(obj, key):
            field_val = getattr(obj, key)
            if dataclasses.is_dataclass(field_val) and isinstance(value, dict):
                _merge_dict_to_dataclass(field_val, value, f"{_path}{key}.")
            else:
                full_key = f"{_path}{key}"
                # Reject None for fields with non-None defaults
                if value is None and field_val is not None:
                    logger.warning(
                        f"Config key '{full_key}' is null but field default is "
                        f"{type(field_val).__name__}. Using default value."
                    )
                    continue
                expected_type = type(field_val)
                # Allow int->float and exact float->int promotion
                if (field_val is not None
                        and not isinstance(value, expected_type)
                        and not (expected_type is float
                                 and isinstance(value, int))
                        and not (expected_type is int
                                 and isinstance(value, float)
                                 and value == int(value))):
                    logger.warning(
                        f"Config type mismatch for '{full_key}': "
                        f"expected {expected_type.__name__}, "
                        f"got {type(value).__name__} ({value!r}). "
                        f"Using default value."
                    )
                    continue
                if (expected_type is int and isinstance(value, float)
                        and value == int(value)):
                    value = int(value)
                if expected_type is float and isinstance(value, int):
                    value = float(value)
                setattr(obj, key, value)
        else:
            full_key = f"{_path}{key}"
            logger.warning(f"Unknown config key ignored: '{full_key}'")
