"""
Figma REST v1 client and color-token extraction from design-system swatch nodes.
"""

from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from mrpilot.clients.http import DEFAULT_TIMEOUT, raise_for_status
from mrpilot.config import Settings

FIGMA_API_URL = "https://api.figma.com/v1"
EXCLUDED_PATH_NAMES = {"Variable Color Swatches", "Index", "token-details"}


@dataclass
class ColorToken:
    name: str
    hex: str
    category: str


def rgb_to_hex(r: float, g: float, b: float, a: float = 1.0) -> str:
    """Convert Figma's 0-1 float channels to ``#RRGGBB`` (``#RRGGBBAA`` when translucent)."""

    def channel(value: float) -> str:
        return f"{max(0, min(255, round(value * 255))):02X}"

    hex_value = f"#{channel(r)}{channel(g)}{channel(b)}"
    if a < 1:
        hex_value += channel(a)
    return hex_value


def _swatch_color(node: Dict[str, Any]) -> Optional[str]:
    for fill in node.get("fills") or []:
        if fill.get("type") == "SOLID" and fill.get("color"):
            color = fill["color"]
            return rgb_to_hex(color.get("r", 0), color.get("g", 0), color.get("b", 0), color.get("a", 1))
    background = node.get("backgroundColor")
    if background:
        return rgb_to_hex(background.get("r", 0), background.get("g", 0), background.get("b", 0), background.get("a", 1))
    return None


def extract_color_tokens(document: Dict[str, Any]) -> List[ColorToken]:
    """Walk a node tree and return one token per swatch.

    A token's name comes from its ancestors' names (minus layout-only frames);
    swatches with fewer than two meaningful ancestors are skipped.
    """
    tokens: List[ColorToken] = []

    def walk(node: Dict[str, Any], path: List[str]):
        name = (node.get("name") or "").strip()
        if name.lower() == "swatch":
            parts = [part for part in path if part and part not in EXCLUDED_PATH_NAMES]
            color = _swatch_color(node)
            if len(parts) >= 2 and color:
                tokens.append(ColorToken(name="/".join(parts), hex=color, category=parts[0]))
            return
        for child in node.get("children") or []:
            walk(child, path + [name])

    if document:
        walk(document, [])
    return tokens


def group_by_category(tokens: List[ColorToken]) -> "OrderedDict[str, List[ColorToken]]":
    groups: "OrderedDict[str, List[ColorToken]]" = OrderedDict()
    for token in tokens:
        groups.setdefault(token.category, []).append(token)
    return groups


class FigmaClient:
    """Fetches file nodes with a personal access token."""

    def __init__(self, settings: Settings):
        self.headers = {"X-Figma-Token": settings.require("figma_token")}

    def get_node(self, file_id: str, node_id: str) -> Dict[str, Any]:
        """Return the ``document`` of one node; ``39245-34247`` style ids are accepted."""
        node_key = node_id.replace("-", ":")
        response = requests.get(
            f"{FIGMA_API_URL}/files/{file_id}/nodes",
            headers=self.headers,
            params={"ids": node_key},
            timeout=DEFAULT_TIMEOUT,
        )
        raise_for_status("Figma", response)
        node = (response.json().get("nodes") or {}).get(node_key) or {}
        return node.get("document") or {}

    def color_tokens(self, file_id: str, node_id: str) -> List[ColorToken]:
        return extract_color_tokens(self.get_node(file_id, node_id))
