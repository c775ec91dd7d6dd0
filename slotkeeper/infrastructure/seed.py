from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from slotkeeper.core.use_cases.manage_slots import SlotSpec

logger = logging.getLogger(__name__)


def load_layouts(path: str | Path) -> dict[str, list[SlotSpec]]:
    """
    Read facility slot layouts from a YAML file:

        facilities:
          - facility_id: lakeside
            slots:
              - {slot_number: A1, x: 10, y: 20}
              - {slot_number: A2, x: 40, y: 20, admin_only: true}

    A missing file yields no layouts.
    """
    path = Path(path)
    if not path.exists():
        logger.info("No seed file at %s", path)
        return {}

    with path.open() as f:
        doc = yaml.safe_load(f) or {}

    layouts: dict[str, list[SlotSpec]] = {}
    for facility in doc.get("facilities") or []:
        facility_id = str(facility["facility_id"])
        layouts[facility_id] = [_to_spec(raw) for raw in facility.get("slots") or []]
    return layouts


def _to_spec(raw: dict[str, Any]) -> SlotSpec:
    return SlotSpec(
        slot_number=str(raw["slot_number"]),
        x=float(raw.get("x", 0)),
        y=float(raw.get("y", 0)),
        admin_only=bool(raw.get("admin_only", False)),
        slot_id=raw.get("slot_id"),
    )
