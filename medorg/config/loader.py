import yaml
from pathlib import Path
from .models import AppConfig


def load_config(config_path: Path) -> AppConfig:
    """Loads YAML config and parses it into AppConfig Pydantic model."""
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config root must be a mapping, got {type(data).__name__}: {config_path}")

    # Flat `categories:` at the root is accepted as shorthand for categorize.categories
    categories = data.pop("categories", None)
    if isinstance(categories, dict):
        data.setdefault("categorize", {})["categories"] = categories

    return AppConfig(**data)
