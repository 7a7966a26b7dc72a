"""
YAML schedule files.

A schedule file is a list of schedule definitions, as produced by
ScanScheduler.export_schedules():

    - name: Office LAN discovery
      recurrence: {hours: 1}
      scan: {targets: [192.168.1.0/24], profile: discovery}
      retries: 2
"""

from pathlib import Path
from typing import Dict, List

import yaml

from netdelta.exceptions import ValidationError
from netdelta.logging_config import get_logger

logger = get_logger(__name__)


def load_schedules_file(path) -> List[Dict]:
    """
    Read schedule definitions from a YAML file.

    Accepts either a top-level list or a mapping with a ``schedules`` key.

    Raises:
        ValidationError: The file is not valid YAML or has the wrong shape
        FileNotFoundError: The file does not exist
    """
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValidationError(f"Invalid schedules file {path}: {e}") from e

    if data is None:
        return []
    if isinstance(data, dict):
        data = data.get("schedules") or []
    if not isinstance(data, list):
        raise ValidationError(f"Schedules file {path} must contain a list")

    logger.info(f"Loaded {len(data)} schedule definitions from {path}")
    return data


def dump_schedules_file(definitions: List[Dict], path) -> Path:
    """Write schedule definitions to a YAML file"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        yaml.safe_dump({"schedules": list(definitions)}, sort_keys=False, default_flow_style=False),
        encoding="utf-8",
    )
    logger.info(f"Wrote {len(definitions)} schedule definitions to {path}")
    return path
