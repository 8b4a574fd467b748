"""Source configuration loader."""

import json
from pathlib import Path
from typing import List

from ..ingestion.interfaces import SourceConfig, SourceType


def load_sources(config_path: str = None) -> List[SourceConfig]:
    """Load source configurations from JSON file."""
    if config_path is None:
        from .settings import settings
        config_path = settings.sources_file

    with open(config_path) as f:
        data = json.load(f)

    sources = []
    for source_data in data.get("sources", []):
        sources.append(SourceConfig(
            source_id=source_data["source_id"],
            source_name=source_data["source_name"],
            url=source_data["url"],
            source_type=SourceType(source_data.get("type", "rss")),
            is_national=source_data.get("is_national", False),
            disabled=source_data.get("disabled", False),
        ))

    return sources
