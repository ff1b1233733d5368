"""
Process-wide configuration for the jimeng proxy.

Values are read once from the environment (after loading .env) and are
treated as immutable for the lifetime of the process.
"""
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

APP_NAMESPACE = "jimeng-free-api-mcp"
DEFAULT_PORT = 8000
DEFAULT_DOWNLOAD_TIMEOUT = 120.0
DEFAULT_PROVIDER_TIMEOUT = 300.0
DEFAULT_PROVIDER_URL = "https://jimeng.jianying.com"
DOTENV_FILENAME = ".env"


def load_jimeng_dotenv(module_dir: Optional[Path] = None) -> tuple[bool, list[Path]]:
    """Load the first .env beside the entry-point package, else at the repository root.

    Variables already set in the process environment are not overridden.
    Returns whether a file was loaded and the paths searched.
    """
    base_dir = Path(module_dir) if module_dir else Path(__file__).parent
    paths = [base_dir / DOTENV_FILENAME, base_dir.parent / DOTENV_FILENAME]
    for path in paths:
        if path.is_file():
            load_dotenv(path, override=False)
            logger.info("Loaded environment from %s", path)
            return True, paths
    logger.warning("No .env file found; searched: %s", ", ".join(str(path) for path in paths))
    return False, paths


def parse_session_ids(raw_value: Optional[str]) -> tuple[str, ...]:
    """Split a comma-separated credential list, dropping blanks."""
    if not raw_value:
        return ()
    return tuple(token.strip() for token in raw_value.split(",") if token.strip())


def _get_env(env: Mapping[str, str], name: str, default: Optional[str] = None) -> Optional[str]:
    value = env.get(name)
    return value if value else default


def _parse_number(env: Mapping[str, str], name: str, default: float) -> float:
    raw_value = env.get(name)
    if not raw_value:
        return default
    try:
        value = float(raw_value)
    except ValueError:
        logger.warning("Invalid %s=%r; using default %s", name, raw_value, default)
        return default
    if value <= 0:
        logger.warning("Non-positive %s=%r; using default %s", name, raw_value, default)
        return default
    return value


@dataclass(frozen=True)
class Settings:
    public_dir_path: Path
    public_dir_url: str
    url_prefix: str = ""
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    session_ids: tuple[str, ...] = ()
    provider_base_url: str = DEFAULT_PROVIDER_URL
    mcp_temp_root: Path = Path(tempfile.gettempdir()) / APP_NAMESPACE
    download_timeout: float = DEFAULT_DOWNLOAD_TIMEOUT
    provider_timeout: float = DEFAULT_PROVIDER_TIMEOUT
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from an environment mapping (defaults to os.environ)."""
        env = os.environ if env is None else env

        port = int(_parse_number(env, "SERVER_PORT", 0) or _parse_number(env, "PORT", DEFAULT_PORT))
        public_dir_path = Path(_get_env(env, "JIMENG_PUBLIC_DIR", "public")).expanduser().resolve()
        public_dir_url = _get_env(env, "JIMENG_PUBLIC_DIR_URL", f"http://127.0.0.1:{port}/public")
        session_ids = parse_session_ids(_get_env(env, "JIMENG_SESSION_ID") or _get_env(env, "JIMENG_TOKEN"))
        mcp_temp_root = Path(
            _get_env(env, "JIMENG_MCP_TEMP_DIR", str(Path(tempfile.gettempdir()) / APP_NAMESPACE))
        ).expanduser()

        return cls(
            public_dir_path=public_dir_path,
            public_dir_url=public_dir_url.rstrip("/"),
            url_prefix=_get_env(env, "JIMENG_URL_PREFIX", "").strip(),
            host=_get_env(env, "SERVER_HOST", "0.0.0.0"),
            port=port,
            session_ids=session_ids,
            provider_base_url=_get_env(env, "JIMENG_PROVIDER_URL", DEFAULT_PROVIDER_URL).rstrip("/"),
            mcp_temp_root=mcp_temp_root,
            download_timeout=_parse_number(env, "JIMENG_DOWNLOAD_TIMEOUT", DEFAULT_DOWNLOAD_TIMEOUT),
            provider_timeout=_parse_number(env, "JIMENG_PROVIDER_TIMEOUT", DEFAULT_PROVIDER_TIMEOUT),
            log_level=_get_env(env, "LOG_LEVEL", "INFO").upper(),
        )
