"""Configuration settings for the Upload Server."""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from upload_server.formatting import format_bytes
from upload_server.logger_config import setup_logger

logger = setup_logger()

# Network
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080

# Upload limits
DEFAULT_MAX_FILE_SIZE = 0  # 0 means unlimited
CHUNK_SIZE = 64 * 1024  # 64KB

# Directory paths
UPLOAD_DIR = "./uploads"
TEMP_DIR = "./temp"  # must share a filesystem with UPLOAD_DIR
TEMPLATES_DIR = "./templates"
INDEX_TEMPLATE = "index.html"


def parse_max_file_size(value: Optional[str]) -> int:
    """Parse MAX_FILE_SIZE, falling back to unlimited on bad input."""
    if value is None or value.strip() == "":
        return DEFAULT_MAX_FILE_SIZE
    try:
        size = int(value)
    except ValueError:
        logger.warning(f"Invalid MAX_FILE_SIZE value: {value}, using unlimited")
        return DEFAULT_MAX_FILE_SIZE
    if size < 0:
        logger.warning(f"Negative MAX_FILE_SIZE value: {value}, using unlimited")
        return DEFAULT_MAX_FILE_SIZE
    return size


@dataclass(frozen=True)
class Settings:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    upload_dir: Path = Path(UPLOAD_DIR)
    temp_dir: Path = Path(TEMP_DIR)
    templates_dir: Path = Path(TEMPLATES_DIR)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'Settings':
        """Create Settings from environment variables.

        Args:
            environ: Mapping to read from. Defaults to os.environ.

        Raises:
            ValueError: If PORT is not an integer.
        """
        env = os.environ if environ is None else environ

        port_value = env.get("PORT", str(DEFAULT_PORT))
        try:
            port = int(port_value)
        except ValueError:
            raise ValueError(f"Invalid PORT value: {port_value}")

        return cls(
            host=env.get("HOST", DEFAULT_HOST),
            port=port,
            max_file_size=parse_max_file_size(env.get("MAX_FILE_SIZE")),
            upload_dir=Path(env.get("UPLOAD_DIR", UPLOAD_DIR)),
            temp_dir=Path(env.get("TEMP_DIR", TEMP_DIR)),
            templates_dir=Path(env.get("TEMPLATES_DIR", TEMPLATES_DIR)),
        )

    @property
    def index_template(self) -> Path:
        return self.templates_dir / INDEX_TEMPLATE

    def describe_limit(self) -> str:
        if self.max_file_size > 0:
            return format_bytes(self.max_file_size)
        return "unlimited"
