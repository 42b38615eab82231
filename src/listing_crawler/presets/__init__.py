"""Site presets for known listing templates."""

from listing_crawler.presets.registry import PresetRegistry, SitePreset, apply_preset

__all__ = [
    "SitePreset",
    "PresetRegistry",
    "apply_preset",
]
