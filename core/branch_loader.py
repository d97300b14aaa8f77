"""
Branch loader for the SkyLife bot.

Discovers the folder branches under branches/, generates each branch's
config.yml from its DEFAULT_CONFIG on first start and fills in settings that
were added to DEFAULT_CONFIG after the file was written.
"""

import logging
import importlib
from copy import deepcopy
from pathlib import Path
from typing import Optional, Dict, Any, List
from dataclasses import dataclass

import yaml

from config import validate_channel_id, validate_role_ids
from constants import BRANCH_CONFIG_FILE

logger = logging.getLogger(__name__)

BRANCHES_DIR = Path(__file__).resolve().parent.parent / "branches"


@dataclass
class BranchMetadata:
    """Metadata about a branch."""
    name: str
    path: Path
    has_config: bool
    enabled: bool
    version: str = "1.0.0"


def merge_defaults(config: Dict[str, Any], defaults: Dict[str, Any]) -> Dict[str, Any]:
    """Return config with any keys missing from it copied from defaults (recursively for dicts)."""
    merged = deepcopy(config)
    for key, value in defaults.items():
        if key not in merged:
            merged[key] = deepcopy(value)
        elif isinstance(value, dict) and isinstance(merged[key], dict):
            merged[key] = merge_defaults(merged[key], value)
    return merged


def validate_branch_settings(branch_name: str, settings: Dict[str, Any]) -> bool:
    """Check every *_channel_id / *_role_id(s) setting looks like a Discord id."""
    valid = True
    for key, value in settings.items():
        if key.endswith("_channel_id") or key.endswith("_role_id"):
            valid &= validate_channel_id(value, f"{branch_name}.{key}")
        elif key.endswith("_role_ids"):
            valid &= validate_role_ids(value, f"{branch_name}.{key}")
        elif key == "department_roles" and isinstance(value, dict):
            for department, role_id in value.items():
                valid &= validate_channel_id(role_id, f"{branch_name}.department_roles.{department}")
    return valid


class BranchLoader:
    """Manages loading branches with auto-generated configs."""

    def __init__(self, branches_dir: Path = BRANCHES_DIR):
        self.branches_dir = Path(branches_dir)
        self.loaded_branches: Dict[str, BranchMetadata] = {}

    def discover_branches(self) -> List[str]:
        """Names of every branch package (a folder with __init__.py)."""
        branch_names = []

        for item in self.branches_dir.iterdir():
            if item.name.startswith("_") or item.name.startswith("."):
                continue

            if item.is_dir() and (item / "__init__.py").exists():
                branch_names.append(item.name)
                logger.debug(f"Discovered branch: {item.name}")

        return sorted(branch_names)

    def get_branch_path(self, branch_name: str) -> Optional[Path]:
        branch_folder = self.branches_dir / branch_name
        return branch_folder if branch_folder.is_dir() else None

    def get_config_path(self, branch_name: str) -> Optional[Path]:
        branch_path = self.get_branch_path(branch_name)
        return branch_path / BRANCH_CONFIG_FILE if branch_path else None

    def load_config(self, branch_name: str) -> Dict[str, Any]:
        """
        Load config for a branch.

        A missing file is generated from DEFAULT_CONFIG; an existing file gets
        new default keys merged in and written back.
        """
        config_path = self.get_config_path(branch_name)
        default_config = self.get_default_config(branch_name)

        if not config_path or not config_path.exists():
            if config_path:
                self.save_config(branch_name, default_config)
            return deepcopy(default_config)

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                config = yaml.safe_load(f) or {}
        except Exception as e:
            logger.error(f"Failed to load config for {branch_name}: {e}")
            return deepcopy(default_config)

        merged = merge_defaults(config, default_config)
        if merged != config:
            logger.info(f"Added new default settings to {branch_name} config")
            self.save_config(branch_name, merged)

        if not validate_branch_settings(branch_name, merged.get("settings", {})):
            logger.warning(f"{branch_name} config has invalid Discord ids, check {config_path}")

        logger.info(f"Loaded config for {branch_name}")
        return merged

    def save_config(self, branch_name: str, config: Dict[str, Any]):
        config_path = self.get_config_path(branch_name)
        if not config_path:
            logger.error(f"Cannot save config for {branch_name}: no valid path")
            return

        try:
            with open(config_path, "w", encoding="utf-8") as f:
                yaml.safe_dump(config, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
            logger.info(f"✅ Saved config for {branch_name}")
        except Exception as e:
            logger.error(f"Failed to save config for {branch_name}: {e}")

    def get_default_config(self, branch_name: str) -> Dict[str, Any]:
        """The branch module's DEFAULT_CONFIG, or a bare enabled config."""
        try:
            module = importlib.import_module(f"branches.{branch_name}.branch")
            if hasattr(module, "DEFAULT_CONFIG"):
                return module.DEFAULT_CONFIG
        except Exception as e:
            logger.debug(f"Could not load branch-defined defaults for {branch_name}: {e}")

        return {"enabled": True, "version": "1.0.0", "settings": {}}

    def is_enabled(self, branch_name: str) -> bool:
        return self.load_config(branch_name).get("enabled", True)

    def reload_config(self, branch_name: str) -> Dict[str, Any]:
        logger.info(f"Reloading config for {branch_name}")
        return self.load_config(branch_name)

    def get_load_path(self, branch_name: str) -> Optional[str]:
        """Extension path passed to bot.load_extension (loads through __init__.py)."""
        if not self.get_branch_path(branch_name):
            return None
        return f"branches.{branch_name}"

    def list_branches(self) -> List[BranchMetadata]:
        branches = []

        for branch_name in self.discover_branches():
            config = self.load_config(branch_name)
            config_path = self.get_config_path(branch_name)

            branches.append(BranchMetadata(
                name=branch_name,
                path=self.get_branch_path(branch_name),
                has_config=config_path.exists() if config_path else False,
                enabled=config.get("enabled", True),
                version=config.get("version", "1.0.0")
            ))

        return branches


_loader: Optional[BranchLoader] = None


def get_branch_loader() -> BranchLoader:
    """Shared loader used by the bot and the admin branch."""
    global _loader
    if _loader is None:
        _loader = BranchLoader()
    return _loader
