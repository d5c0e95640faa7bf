"""
CLI Configuration Manager for the Library Console CLI
Keeps the API URL, the session cookie and output preferences between runs
"""

import json
import os
from pathlib import Path
from typing import Dict, Any, Optional
from rich.console import Console

console = Console(stderr=True)

CONFIG_DIR_ENV = "LIB_CLI_CONFIG_DIR"

class CLIConfig:
    """Manages CLI configuration and the stored session."""

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = Path(config_dir or os.environ.get(CONFIG_DIR_ENV) or Path.home() / ".library-console")
        self.config_file = self.config_dir / "config.json"
        self.config: Dict[str, Any] = {}
        self.load_config()

    def load_config(self) -> None:
        """Load configuration from file, or start from defaults."""
        if self.config_file.exists():
            try:
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    self.config = json.load(f)
                return
            except (OSError, ValueError) as e:
                console.print(f"[yellow]⚠️  Could not load config: {e}[/]")
        self.config = self.default_config()

    @staticmethod
    def default_config() -> Dict[str, Any]:
        return {
            "api_url": None,
            "session": {"token": None, "email": None, "role": None},
            "preferences": {"output": "plain"},
        }

    def save_config(self) -> None:
        """Save current configuration to file."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        try:
            with open(self.config_file, 'w', encoding='utf-8') as f:
                json.dump(self.config, f, indent=2, ensure_ascii=False)
        except OSError as e:
            console.print(f"[red]❌ Could not save config: {e}[/]")

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'session.token')."""
        value = self.config
        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return default if value is None else value

    def set(self, key: str, value: Any) -> None:
        """Set configuration value using dot notation."""
        keys = key.split('.')
        config = self.config
        for k in keys[:-1]:
            if not isinstance(config.get(k), dict):
                config[k] = {}
            config = config[k]
        config[keys[-1]] = value
        self.save_config()

    def save_session(self, token: Optional[str], email: Optional[str], role: Optional[str]) -> None:
        self.config["session"] = {"token": token, "email": email, "role": role}
        self.save_config()

    def clear_session(self) -> None:
        self.save_session(None, None, None)


_cli_config: Optional[CLIConfig] = None


def get_cli_config() -> CLIConfig:
    """Get or create the CLI config instance"""
    global _cli_config
    if _cli_config is None or _cli_config.config_dir != Path(os.environ.get(CONFIG_DIR_ENV) or _cli_config.config_dir):
        _cli_config = CLIConfig()
    return _cli_config
