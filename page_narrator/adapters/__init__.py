from page_narrator.adapters.base import DocumentAdapter
from page_narrator.adapters.page import (
    FixedPageDocumentAdapter,
    RenderGate,
    page_locator,
    parse_page_locator,
)
from page_narrator.adapters.range import RangeDocumentAdapter

__all__ = [
    "DocumentAdapter",
    "FixedPageDocumentAdapter",
    "RangeDocumentAdapter",
    "RenderGate",
    "page_locator",
    "parse_page_locator",
]
