"""
Illustration catalog: recognises requests for train-part photos and
schematic pages in a user message and builds the matching attachment.
"""

import json
import logging
import os
import re
from typing import Dict, Optional
from urllib.parse import quote

from ..schemas.message import Attachment

logger = logging.getLogger(__name__)


TRAIN_PARTS = {
    "alerter": "SD60M ALERTER Q2518.jpg",
    "distributed power": "SD60M DISTRIBUTED POWER LSI RACK.jpg",
    "computer screen": "SD60M HVC 60 SERIES COMPUTER SCREEN.jpg",
    "circuit breaker panel": "SD60M HVC CIRCUIT BREAKER PANEL.jpg",
    "isolation panel behind": "SD60M HVC ISOLATION PANEL BEHIND.jpg",
    "isolation panel inside": "SD60M HVC ISOLATION PANEL INSIDE.jpg",
    "relay panel right wall": "SD60M HVC RELAY PANEL RIGHT WALL.jpg",
    "relay panel right": "SD60M HVC RELAY PANEL RIGHT.jpg",
    "relay panel upper middle": "SD60M HVC RELAY PANEL UPPER MIDDLE.jpg",
    "relay panel upper right": "SD60M HVC RELAY PANEL UPPER RIGHT.jpg",
    "relay panel": "SD60M HVC RELAY PANEL.jpg",
    "smartstart": "SD60M HVC SMARTSTART 2E.jpg",
    "event recorder": "SD60M QUANTUM EVENT RECORDER.jpg",
    "remote card download": "SD60M QUANTUM REMOTE CARD DOWNLOAD.jpg",
    "resistors": "SD60M RESISTORS & DIODES LSI RACK.jpg",
    "sub-base fast break": "SD60M SUB-BASE FAST BREAK REAR.jpg",
    "tb30s board": "SD60M TB30S BOARD PANEL STYLE.jpg",
    "terminal board": "SD60M TERMINAL BOARD 30S X STYLE.jpg",
    "dc-dc converter": "SD60M WILMORE DC-DC CONVERTER.jpg",
}

SD60_PAGES = [
    13, 14, 15, 16, 17, 18, 19, 20, 21, 22, 23, 24, 25, 26, 27, 28, 29, 30,
    31, 32, 33, 34, 35, 36, 37, 38, 39, 40, 41, 42, 43, 44, 45, 46, 47, 48,
    50, 51, 53, 56, 57, 58, 59, 60, 62,
]
SD60_SCHEMATICS = {str(p): f"WD03463 SD-60 PAGE {p}.png" for p in SD60_PAGES}

IETMS_SCHEMATICS = {str(p): f"24-2-19294 PTC IETMS PAGE {p}.png" for p in range(2, 11)}
IETMS_DEFAULT_PAGE = "2"

IMAGE_REQUEST_PHRASES = (
    "show me an image of",
    "show me a picture of",
    "show me the",
    "can i see the",
    "display the",
    "show a photo of",
    "let me see the",
)

SCHEMATIC_REQUEST_PHRASES = (
    "show me a schematic",
    "show me the schematic",
    "show schematic",
    "can i see schematic",
    "display schematic",
    "show me diagram",
    "schematic page",
    "page",
    "sd-60 page",
    "sd60 page",
)

IETMS_REQUEST_PHRASES = (
    "show me a schematic of ietms",
    "show me the schematic of ietms",
    "show me the ietms schematic",
    "show ietms schematic",
    "can i see ietms schematic",
    "display ietms schematic",
    "show me ietms diagram",
    "ietms page",
    "ptc ietms",
    "ptc page",
    "show me the schematic of ptc",
)

PAGE_PATTERN = re.compile(r"page\s+(\d+)", re.IGNORECASE)
NUMBER_PATTERN = re.compile(r"\b(\d+)\b")


def load_metadata(path: Optional[str]) -> Dict[str, Dict[str, str]]:
    """Load display-name overrides for train parts, if the file exists."""
    if not path or not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.error("Error loading illustration metadata from %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Illustration metadata in %s is not an object, ignoring it", path)
        return {}
    return data


class IllustrationCatalog:
    """Maps free text to an illustration attachment."""

    def __init__(self, base_url: str, metadata: Optional[Dict[str, Dict[str, str]]] = None):
        self.base_url = base_url.rstrip("/")
        self.metadata = metadata or {}

    def resolve(self, message: str) -> Optional[Attachment]:
        """IETMS is checked before SD-60 schematics, being the more specific."""
        return (
            self.identify_train_part(message)
            or self.identify_ietms_schematic(message)
            or self.identify_schematic(message)
        )

    def _image_url(self, kind: str, filename: str) -> str:
        return f"{self.base_url}/api/{kind}/image/{quote(filename)}"

    def _train_part(self, part: str) -> Attachment:
        filename = TRAIN_PARTS[part]
        meta = self.metadata.get(part) or {}
        display_name = meta.get("displayName") or part[:1].upper() + part[1:]
        return Attachment(
            name=part,
            display_name=display_name,
            filename=filename,
            image_url=self._image_url("train", filename),
            description="",
            type="trainPart"
        )

    def identify_train_part(self, message: str) -> Optional[Attachment]:
        text = message.lower()
        if not any(phrase in text for phrase in IMAGE_REQUEST_PHRASES):
            return None

        for part in TRAIN_PARTS:
            if part in text:
                return self._train_part(part)

        # fall back to words of the message appearing in a filename
        words = [w for w in text.split(" ") if len(w) > 3]
        for part, filename in TRAIN_PARTS.items():
            lowered = filename.lower()
            if any(word in lowered for word in words):
                return self._train_part(part)

        return None

    @staticmethod
    def _find_page(message: str, pages: Dict[str, str]) -> Optional[str]:
        match = PAGE_PATTERN.search(message)
        if match and match.group(1) in pages:
            return match.group(1)
        for match in NUMBER_PATTERN.finditer(message):
            if match.group(1) in pages:
                return match.group(1)
        return None

    def identify_schematic(self, message: str) -> Optional[Attachment]:
        text = message.lower()
        if "ietms" in text or "ptc" in text:
            return None
        if not any(phrase in text for phrase in SCHEMATIC_REQUEST_PHRASES):
            return None

        page = self._find_page(message, SD60_SCHEMATICS)
        if page is None:
            return None

        filename = SD60_SCHEMATICS[page]
        return Attachment(
            name=f"schematic_page_{page}",
            display_name=f"SD-60 Schematic Page {page}",
            filename=filename,
            image_url=self._image_url("schematic", filename),
            description=f"Electrical schematic diagram for the SD-60, page {page}",
            type="schematic"
        )

    def identify_ietms_schematic(self, message: str) -> Optional[Attachment]:
        text = message.lower()
        asks_schematic = "schematic" in text and ("ietms" in text or "ptc" in text)
        if not asks_schematic and not any(phrase in text for phrase in IETMS_REQUEST_PHRASES):
            return None

        page = self._find_page(message, IETMS_SCHEMATICS)
        description = f"PTC IETMS schematic diagram, page {page}"
        if page is None:
            page = IETMS_DEFAULT_PAGE
            description = f"PTC IETMS schematic diagram, page {page} (first page)"

        filename = IETMS_SCHEMATICS[page]
        return Attachment(
            name=f"ietms_page_{page}",
            display_name=f"PTC IETMS Schematic Page {page}",
            filename=filename,
            image_url=self._image_url("ietms", filename),
            description=description,
            type="ietms"
        )
