"""Project root, settings and secrets."""

import json
import logging
import os
from dataclasses import dataclass, fields

from dotenv import load_dotenv

from specgraph.errors import SpecGraphError

log = logging.getLogger("spec-graph.config")

PROJECT_DIR_ENV = "SPECGRAPH_PROJECT_DIR"
API_KEY_ENV = "XAI_API_KEY"
CONFIG_FILE = os.path.join(".specgraph", "config.json")


@dataclass
class Settings:
    api_endpoint: str = "https://api.x.ai/v1"
    model: str = "grok-beta"
    timeout: float = 60.0
    max_tokens: int = 4000
    temperature: float = 0.7
    log_prompts: bool = False
    git_check: bool = True


def project_root():
    return os.path.abspath(os.environ.get(PROJECT_DIR_ENV, os.getcwd()))


def load_settings(root):
    """Load <root>/.specgraph/config.json over the defaults. Missing file -> defaults."""
    config_path = os.path.join(root, CONFIG_FILE)
    if not os.path.exists(config_path):
        return Settings()
    with open(config_path, "r", encoding="utf-8") as f:
        try:
            raw = json.load(f)
        except json.JSONDecodeError as e:
            raise SpecGraphError(f"{config_path}: invalid JSON ({e})") from e
    if not isinstance(raw, dict):
        raise SpecGraphError(f"{config_path}: expected a JSON object")

    known = {f.name for f in fields(Settings)}
    for key in sorted(set(raw) - known):
        log.warning("%s: ignoring unknown setting '%s'", config_path, key)
    return Settings(**{k: v for k, v in raw.items() if k in known})


def api_key(root=None):
    """XAI_API_KEY from the environment, after reading <root>/.env if present."""
    if root is not None:
        load_dotenv(os.path.join(root, ".env"))
    else:
        load_dotenv()
    return os.environ.get(API_KEY_ENV)
