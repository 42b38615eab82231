"""Site presets for known listing-page templates."""

from pydantic import BaseModel

from listing_crawler.config import AppConfig


class SitePreset(BaseModel):
    """Selectors and fetch hints for one listing-site template."""

    name: str
    description: str

    listing_link_selector: str
    field_selectors: dict[str, str]
    required_fields: list[str] = []
    remove_selectors: list[str] = []
    page_path: str = "page/{page}/"
    browser_fallback: bool = False
    wait_selector: str | None = None


TRIBE_EVENTS_PRESET = SitePreset(
    name="tribe-events",
    description="WordPress 'The Events Calendar' list views (e.g. car show directories)",
    listing_link_selector="h2.tribe-events-list-event-title.entry-title.summary a.url",
    field_selectors={
        "event_name": "h1.entry-title",
        "venue": ".meta_data .tribe-events-venue-details-on-single .tribe-get_venue",
        "street_address": ".tribe-events-address .tribe-address .tribe-street-address",
        "city": ".tribe-events-address .tribe-address .tribe-locality",
        "state_abbr": ".tribe-events-address .tribe-address .tribe-region@title",
        "country": ".tribe-events-address .tribe-address .tribe-country-name",
        "date": ".meta_data .main_meta_data:has(i.fa-calendar) .date_value .tribe-events-abbr@title",
        "time": ".meta_data .main_meta_data:has(i.fa-clock) .time_value .tribe-events-abbr",
        "description": ".content_description.fulldescriptio",
    },
    required_fields=["event_name"],
    remove_selectors=["script", "style", "noscript", "a.seeless"],
    browser_fallback=True,
    wait_selector="h2.tribe-events-list-event-title a.url",
)

WORDPRESS_ARCHIVE_PRESET = SitePreset(
    name="wordpress-archive",
    description="Paginated WordPress post archives (/page/N/)",
    listing_link_selector="article h2.entry-title a[href]",
    field_selectors={
        "title": "h1.entry-title",
        "published": "time.entry-date@datetime",
        "author": ".author.vcard a",
        "content": ".entry-content",
    },
    required_fields=["title"],
    remove_selectors=["script", "style", "noscript", ".sharedaddy"],
)


class PresetRegistry:
    """Registry of site presets."""

    _presets: dict[str, SitePreset] = {
        "tribe-events": TRIBE_EVENTS_PRESET,
        "wordpress-archive": WORDPRESS_ARCHIVE_PRESET,
    }

    @classmethod
    def register(cls, preset: SitePreset) -> None:
        """Register a new preset."""
        cls._presets[preset.name] = preset

    @classmethod
    def get(cls, name: str) -> SitePreset | None:
        """Get a preset by name."""
        return cls._presets.get(name)

    @classmethod
    def list_presets(cls) -> list[SitePreset]:
        """List all registered presets."""
        return list(cls._presets.values())


def apply_preset(config: AppConfig, preset: SitePreset) -> AppConfig:
    """Return a copy of ``config`` with the preset's selectors and hints applied."""
    extractor = config.extractor.model_copy(
        update={
            "listing_link_selector": preset.listing_link_selector,
            "field_selectors": dict(preset.field_selectors),
            "required_fields": list(preset.required_fields),
            "remove_selectors": list(preset.remove_selectors),
        }
    )

    fetcher_updates: dict = {}
    if preset.browser_fallback and not config.fetcher.use_js:
        fetcher_updates["browser_fallback"] = True
    if preset.wait_selector and not config.fetcher.wait_selector:
        fetcher_updates["wait_selector"] = preset.wait_selector
    fetcher = config.fetcher.model_copy(update=fetcher_updates)

    crawl = config.crawl.model_copy(update={"page_path": preset.page_path})

    return config.model_copy(
        update={
            "extractor": extractor,
            "fetcher": fetcher,
            "crawl": crawl,
            "preset": preset.name,
        }
    )
