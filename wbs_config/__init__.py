"""
wbs_config -- single public entrypoint for engine settings.

Responsibility:
    Provides ``get_active_settings()``, the only way engines' callers obtain
    ``EngineSettings`` at runtime. YAML loading is internal to this package.

Architecture position:
    Configuration -- sits above ``wbs_kernel``. The kernel never imports
    ``wbs_config``; engines receive settings as explicit arguments.

Failure modes:
    - ``FileNotFoundError`` -- requested settings file does not exist.
    - ``InvalidSettingsError`` -- schema validation failed.

Audit relevance:
    Every successful load emits a ``WBS_CONFIG_TRACE`` log record with the
    config id, source path and checksum.
"""

from __future__ import annotations

from pathlib import Path

from wbs_config.loader import compute_checksum, load_yaml_file, parse_settings
from wbs_config.schema import DEFAULT_SETTINGS, EngineSettings
from wbs_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_settings(config_path: Path | None = None) -> EngineSettings:
    """
    Load and validate engine settings.

    Args:
        config_path: YAML file to read. Defaults to the packaged
            ``sets/default.yaml``.

    Returns:
        A validated, frozen ``EngineSettings``.
    """
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_PATH
    data = load_yaml_file(path)
    settings = parse_settings(data, config_id=path.stem)

    _logger.info(
        "WBS_CONFIG_TRACE",
        extra={
            "trace_type": "WBS_CONFIG_TRACE",
            "config_id": settings.config_id,
            "source": str(path),
            "checksum": compute_checksum(data),
            "clamp_overrun_balance": settings.clamp_overrun_balance,
            "default_bdi": str(settings.default_bdi),
        },
    )
    return settings


__all__ = [
    "DEFAULT_SETTINGS",
    "EngineSettings",
    "get_active_settings",
]
