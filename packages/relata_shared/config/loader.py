"""Settings loading with deterministic precedence.

The cascade is always:
1) explicit params (``cli_params``)
2) environment variables, ``RELATA_`` prefix with ``__`` nesting
   (``RELATA_LOGGING__LEVEL=DEBUG`` -> ``logging.level = "DEBUG"``)
3) the YAML config file (``~/.config/relata/relata.yaml`` unless overridden)
4) model defaults
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, ClassVar, Mapping

from .models import RelataSettings


def load_settings(
    *,
    cli_params: Mapping[str, Any] | None = None,
    config_path: str | Path | None = None,
) -> RelataSettings:
    """Load and validate ``RelataSettings`` from every configured source."""
    params = dict(cli_params or {})
    if config_path is None:
        return RelataSettings(**params)

    resolved = Path(config_path).expanduser()

    class _PathScopedSettings(RelataSettings):
        _config_path: ClassVar[Path] = resolved

    return _PathScopedSettings(**params)
