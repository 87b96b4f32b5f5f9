from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

_FIXTURE_DIR = Path(__file__).resolve().parent.parent.parent / "fixtures"


def load_json(filename: str, path: Optional[str] = None) -> List[Dict[str, Any]]:
    file_path = Path(path) if path else _FIXTURE_DIR / filename
    with file_path.open() as f:
        return json.load(f)


def load_known_businesses(path: Optional[str] = None) -> List[Dict[str, Any]]:
    return load_json("known_businesses.json", path)
