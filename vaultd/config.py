"""
Configuration management for vaultd.

Provides default configuration and loading from <vault>/.vaultd/config.toml.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Optional
try:
    import tomllib  # Python 3.11+
except ImportError:
    import tomli as tomllib  # Fallback for older Python versions

from .chunkers import DEFAULT_SEPARATORS
from .ignore import DEFAULT_IGNORE_PATTERNS

logger = logging.getLogger(__name__)

STATE_DIR = ".vaultd"
CONFIG_FILE = "config.toml"
API_KEY_ENV = "VAULTD_API_KEY"


DEFAULT_CONFIG = {
    "embeddings": {
        "provider": "openai",           # "openai" or "local"
        "base_url": "https://api.openai.com/v1",
        "api_key": None,
        "model": "text-embedding-ada-002",
        "batch_size": 10,
        "timeout": 30.0,
        "device": None,                 # local provider only
    },
    "indexer": {
        "chunk_size": 1000,
        "chunk_overlap": 200,
        "separators": list(DEFAULT_SEPARATORS),
        "ignore_patterns": DEFAULT_IGNORE_PATTERNS,
        "extensions": ["md"],
    },
    "persistence": {
        "db_file": "store.arrow",
        "save_interval_minutes": 5,
    },
    "search": {
        "default_count": 3,
        "min_similarity": 0.6,
        "mode": "vector",               # "vector", "fulltext", "hybrid"
        "fts_weight": 0.5,
    },
    "server": {
        "transport": "sse",             # "stdio", "sse", "streamable-http"
        "host": "127.0.0.1",
        "port": 8080,
        "tools": {
            "search": True,
            "count_entries": True,
            "reindex": True,
            "save_db": True,
            "list_files": True,
            "read_file": True,
            "create_file": True,
            "edit_file": True,
            "delete_file": True,
            "create_folder": True,
            "delete_folder": True,
            "create_link": True,
        },
    },
    "logging": {
        "level": "INFO",
        "file": None,
        "json": False,
    },
}


CONFIG_TEMPLATE = """# vaultd configuration

[embeddings]
provider = "openai"         # "openai" or "local"
base_url = "https://api.openai.com/v1"
# api_key = "sk-..."        # or set VAULTD_API_KEY
model = "text-embedding-ada-002"
batch_size = 10
timeout = 30.0

[indexer]
chunk_size = 1000
chunk_overlap = 200
extensions = ["md"]
ignore_patterns = \"\"\"
.*/
*.png
*.jpg
*.jpeg
*.gif
*.svg
*.webp
*.pdf
\"\"\"

[persistence]
db_file = "store.arrow"
save_interval_minutes = 5

[search]
default_count = 3
min_similarity = 0.6
mode = "vector"             # "vector", "fulltext", or "hybrid"
fts_weight = 0.5            # keyword weight for hybrid mode (0.0-1.0)

[server]
transport = "sse"           # "stdio", "sse", or "streamable-http"
host = "127.0.0.1"
port = 8080

[server.tools]
# Set any tool to false to hide it from clients
delete_file = true
delete_folder = true

[logging]
level = "INFO"
# file = ".vaultd/vaultd.log"
json = false
"""


class Config:
    """
    Configuration manager for vaultd.

    Loads configuration from .vaultd/config.toml if it exists,
    otherwise uses defaults.
    """

    def __init__(self, vault_root: Optional[Path] = None):
        """
        Initialize configuration.

        Args:
            vault_root: Root directory of the vault (defaults to current directory)
        """
        self.vault_root = Path(vault_root) if vault_root else Path.cwd()
        self.config_path = self.state_dir / CONFIG_FILE
        self._config = self._load_config()

        env_key = os.environ.get(API_KEY_ENV)
        if env_key:
            self.set("embeddings", "api_key", value=env_key)

    @property
    def state_dir(self) -> Path:
        """Directory holding vaultd state for this vault."""
        return self.vault_root / STATE_DIR

    @property
    def db_path(self) -> Path:
        """Path of the persisted vector store file."""
        return self.state_dir / self.get("persistence", "db_file", default="store.arrow")

    def _load_config(self) -> dict[str, Any]:
        """Load configuration from file or use defaults."""
        if self.config_path.exists():
            try:
                with open(self.config_path, "rb") as f:
                    user_config = tomllib.load(f)
                logger.info(f"Loaded config from {self.config_path}")
                # Merge with defaults (user config takes precedence)
                return self._merge_configs(DEFAULT_CONFIG, user_config)
            except (OSError, tomllib.TOMLDecodeError) as e:
                logger.warning(f"Failed to load config from {self.config_path}: {e}")
                logger.warning("Using default configuration")
                return copy.deepcopy(DEFAULT_CONFIG)
        else:
            logger.debug("No config file found, using defaults")
            return copy.deepcopy(DEFAULT_CONFIG)

    def _merge_configs(self, default: dict, user: dict) -> dict:
        """
        Recursively merge user config with defaults.

        User values take precedence, but missing keys use defaults.
        """
        merged = copy.deepcopy(default)
        for key, value in user.items():
            if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
                merged[key] = self._merge_configs(merged[key], value)
            else:
                merged[key] = value
        return merged

    def get(self, *keys: str, default: Any = None) -> Any:
        """
        Get a configuration value by nested keys.

        Examples:
            config.get("indexer", "chunk_size")
            config.get("server", "tools", "search")

        Args:
            *keys: Nested keys to traverse
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        value = self._config
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return default if value is None else value

    def set(self, *keys: str, value: Any) -> None:
        """
        Set a configuration value by nested keys.

        Args:
            *keys: Nested keys to traverse
            value: Value to set
        """
        if not keys:
            return

        current = self._config
        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    @property
    def embeddings(self) -> dict[str, Any]:
        """Get embeddings configuration."""
        return self._config.get("embeddings", {})

    @property
    def indexer(self) -> dict[str, Any]:
        """Get indexer configuration."""
        return self._config.get("indexer", {})

    @property
    def persistence(self) -> dict[str, Any]:
        """Get persistence configuration."""
        return self._config.get("persistence", {})

    @property
    def search(self) -> dict[str, Any]:
        """Get search configuration."""
        return self._config.get("search", {})

    @property
    def server(self) -> dict[str, Any]:
        """Get server configuration."""
        return self._config.get("server", {})

    def tool_enabled(self, name: str) -> bool:
        """Check whether a tool is enabled for the MCP server."""
        return bool(self.get("server", "tools", name, default=True))

    def __repr__(self) -> str:
        """String representation."""
        return f"Config(vault_root={self.vault_root})"
