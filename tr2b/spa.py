"""
Single-page-application fallback document.

Any non-API path that no route claims gets the SPA root document so the
client-side router can take over. The document comes from the frontend
build output when one is present.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

PLACEHOLDER_DOCUMENT = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{title}</title>
</head>
<body>
    <div id="root"></div>
    <noscript>{title} needs JavaScript. The API is available under {api_prefix}.</noscript>
</body>
</html>
"""


class SpaDocument:
    """Loads ``index.html`` once; falls back to a minimal placeholder page."""

    def __init__(self, static_dir: Optional[str], *, title: str, api_prefix: str):
        self.static_dir = Path(static_dir) if static_dir else None
        self.html = self._load(title, api_prefix)

    @property
    def assets_dir(self) -> Optional[Path]:
        if self.static_dir is None:
            return None
        assets = self.static_dir / "assets"
        return assets if assets.is_dir() else None

    def _load(self, title: str, api_prefix: str) -> str:
        if self.static_dir is not None:
            index = self.static_dir / "index.html"
            if index.is_file():
                logger.info("Serving SPA document from %s", index)
                return index.read_text(encoding="utf-8")
        return PLACEHOLDER_DOCUMENT.format(title=title, api_prefix=api_prefix)
