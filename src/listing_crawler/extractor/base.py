"""Extractor boundary: listing links and detail records."""

from abc import ABC, abstractmethod

from pydantic import BaseModel, Field


class Record(BaseModel):
    """One structured record scraped from a detail page."""

    url: str
    partition_id: str = ""
    partition_name: str = ""
    fields: dict[str, str | None] = Field(default_factory=dict)


class BaseExtractor(ABC):
    """Site-specific parsing, kept free of I/O."""

    @abstractmethod
    def extract_listing(self, html: str, page_url: str) -> list[str]:
        """Return absolute detail-page URLs found on a listing page."""
        ...

    @abstractmethod
    def extract_detail(self, html: str, url: str) -> Record | None:
        """Return the page's record, or None if the expected fields are absent."""
        ...

    def field_names(self) -> list[str]:
        """Record field names in output order."""
        return []
