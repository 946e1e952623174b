"""
Build settings.

The build is driven by the constants below. A checkout may carry a
``dlnabuild.yaml`` next to it to override any of them without editing code:

.. code-block:: yaml

    thumbnails_enabled: false
    rebuild_all: true
    attempts: 20
"""

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from dlnabuild.core.exceptions import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "dlnabuild.yaml"

TARGET = "arm-linux-musleabi"
TOOLCHAIN_NAME = "cross-arm-linux-musleabi"
TOOLCHAIN_VERSION = "0.2.0"
TOOLCHAIN_URL = (
    "https://github.com/solartracker/{name}/releases/download/{version}/"
    "{name}-{host_cpu}-{version}.tar.xz"
)
TOOLCHAIN_SHA256 = {
    "armv7l": "db200a801420d21b5328c9005225bb0fa822b612c6b67b3da58c397458238634",
    "x86_64": "9a303a9978ff8d590394bccf2a03890ccb129916347dcdd66dc7780ea7826d9b",
}
TOOLCHAIN_SUBDIR = "cross-arm-linux-musleabi-build"
CACHE_SUBDIR = "solartracker-sources"
PACKAGE_ROOT = "minidlna"

# Thumbnail support pulls in libpng and ffmpegthumbnailer (about 2MB).
THUMBNAILS_ENABLED = True
REBUILD_ALL = False

FETCH_ATTEMPTS = 100
RETRY_DELAY = 10.0
FETCH_TIMEOUT = 60


@dataclass
class BuildSettings:
    """
    Resolved settings for one run.

    Directory fields left as None are derived from checkout_dir in
    __post_init__: the cache and toolchain live beside the checkout.
    """

    checkout_dir: Path
    target: str = TARGET
    toolchain_name: str = TOOLCHAIN_NAME
    toolchain_version: str = TOOLCHAIN_VERSION
    toolchain_url: str = TOOLCHAIN_URL
    toolchain_sha256: Dict[str, str] = field(default_factory=lambda: dict(TOOLCHAIN_SHA256))
    package_root: str = PACKAGE_ROOT
    thumbnails_enabled: bool = THUMBNAILS_ENABLED
    rebuild_all: bool = REBUILD_ALL
    attempts: int = FETCH_ATTEMPTS
    retry_delay: float = RETRY_DELAY
    timeout: int = FETCH_TIMEOUT
    jobs: Optional[int] = None
    interpreter: Optional[Path] = None
    cache_dir: Optional[Path] = None
    toolchain_dir: Optional[Path] = None

    def __post_init__(self):
        self.checkout_dir = Path(self.checkout_dir).resolve()
        parent = self.checkout_dir.parent
        if self.cache_dir is None:
            self.cache_dir = parent / CACHE_SUBDIR
        if self.toolchain_dir is None:
            self.toolchain_dir = parent / TOOLCHAIN_SUBDIR
        self.cache_dir = Path(self.cache_dir)
        self.toolchain_dir = Path(self.toolchain_dir)
        if self.interpreter is not None:
            self.interpreter = Path(self.interpreter)

    @property
    def prefix(self) -> Path:
        """Shared install prefix (the toolchain directory)."""
        return self.toolchain_dir

    @property
    def src_root(self) -> Path:
        """Root of the per-package working directories."""
        return self.toolchain_dir / "src" / self.package_root

    @property
    def patches_dir(self) -> Path:
        return self.checkout_dir / "patches"

    @property
    def files_dir(self) -> Path:
        return self.checkout_dir / "files"


# Keys a settings file may set, with the types they accept.
_OVERRIDABLE = {
    "target": (str,),
    "toolchain_version": (str,),
    "toolchain_url": (str,),
    "toolchain_sha256": (dict,),
    "package_root": (str,),
    "thumbnails_enabled": (bool,),
    "rebuild_all": (bool,),
    "attempts": (int,),
    "retry_delay": (int, float),
    "timeout": (int,),
    "jobs": (int, type(None)),
    "interpreter": (str, type(None)),
    "cache_dir": (str,),
    "toolchain_dir": (str,),
}


def _validate(data: Dict[str, Any], source: Path) -> Dict[str, Any]:
    known = {f.name for f in fields(BuildSettings)}
    values = {}
    for key, value in data.items():
        if key not in _OVERRIDABLE:
            hint = " (not overridable)" if key in known else ""
            raise ConfigError(f"{source}: unknown setting '{key}'{hint}")
        allowed = _OVERRIDABLE[key]
        # bool is an int subclass; don't accept True for a count
        if isinstance(value, bool) and bool not in allowed:
            raise ConfigError(f"{source}: '{key}' must not be a boolean")
        if not isinstance(value, allowed):
            names = ", ".join(t.__name__ for t in allowed)
            raise ConfigError(
                f"{source}: '{key}' must be of type {names}, got {type(value).__name__}"
            )
        values[key] = value

    if values.get("attempts", 1) < 1:
        raise ConfigError(f"{source}: 'attempts' must be at least 1")
    if values.get("jobs") is not None and values["jobs"] < 1:
        raise ConfigError(f"{source}: 'jobs' must be at least 1")
    return values


def load_settings(
    checkout_dir: Union[str, Path], config_file: Optional[Union[str, Path]] = None
) -> BuildSettings:
    """
    Build settings for a checkout, applying an optional YAML override file.

    Args:
        checkout_dir: Directory holding patches/ and files/
        config_file: Explicit settings file; defaults to
            <checkout_dir>/dlnabuild.yaml when that exists

    Returns:
        BuildSettings

    Raises:
        ConfigError: If the file is missing (when given explicitly), is not
            valid YAML, is not a mapping, or sets unknown or mistyped keys
    """
    checkout_dir = Path(checkout_dir)
    if config_file is None:
        default = checkout_dir / CONFIG_FILENAME
        if not default.is_file():
            return BuildSettings(checkout_dir=checkout_dir)
        config_file = default

    config_file = Path(config_file)
    if not config_file.is_file():
        raise ConfigError(f"Settings file not found: {config_file}")

    try:
        with open(config_file, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax in {config_file}: {e}")

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"{config_file}: expected a mapping of settings")

    values = _validate(data, config_file)
    logger.debug(f"Settings overrides from {config_file}: {sorted(values)}")
    return BuildSettings(checkout_dir=checkout_dir, **values)
