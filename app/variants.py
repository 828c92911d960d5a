"""Quality variant selection for playback surfaces."""

from .config import QUALITY_LADDER
from .exceptions import VariantSelectionError
from .models_media import MediaItem


def _lines(label: str) -> int:
    if label in QUALITY_LADDER:
        return QUALITY_LADDER[label]
    digits = "".join(ch for ch in label if ch.isdigit())
    return int(digits) if digits else 0


def selectable_variants(item: MediaItem) -> list[str]:
    """Labels present on the item, lowest resolution first."""
    return sorted(item.quality_variants, key=_lines)


def default_selection(item: MediaItem, low_bandwidth: bool = False) -> str | None:
    """Highest available label, or the lowest for low-bandwidth callers."""
    labels = selectable_variants(item)
    if not labels:
        return None
    return labels[0] if low_bandwidth else labels[-1]


def variant_for_height(item: MediaItem, height: int) -> str | None:
    """Storage path of the best variant not taller than height.

    Falls back to the smallest variant when every variant is taller.
    """
    labels = selectable_variants(item)
    if not labels:
        return None
    fitting = [label for label in labels if _lines(label) <= height]
    label = fitting[-1] if fitting else labels[0]
    return item.quality_variants[label]


class VariantSelector:
    """Per-surface selection state. Switching never triggers processing."""

    def __init__(self, item: MediaItem, low_bandwidth: bool = False):
        self.item = item
        self.current = default_selection(item, low_bandwidth)

    @property
    def variants(self) -> list[str]:
        return selectable_variants(self.item)

    @property
    def has_selector(self) -> bool:
        return len(self.item.quality_variants) >= 2

    def select(self, label: str) -> str:
        """Switch to label and return its storage path."""
        if not self.has_selector:
            raise VariantSelectionError("Quality selection needs at least two variants")
        if label not in self.item.quality_variants:
            raise VariantSelectionError(f"Unknown quality: {label}")
        self.current = label
        return self.item.quality_variants[label]

    @property
    def current_path(self) -> str | None:
        if self.current is None:
            return None
        return self.item.quality_variants[self.current]
