"""Headless reflowable EPUB backend: paragraphs grouped into views."""
from __future__ import annotations

import logging
import posixpath
import re
import xml.etree.ElementTree as ET
import zipfile
from pathlib import Path

from bs4 import BeautifulSoup

from page_narrator.backends.base import BackendError, ReflowableBackend, TextRange

logger = logging.getLogger(__name__)

CONTAINER_NS = "urn:oasis:names:tc:opendocument:xmlns:container"
OPF_NS = "http://www.idpf.org/2007/opf"
DC_NS = "http://purl.org/dc/elements/1.1/"
DEFAULT_CHARS_PER_VIEW = 1500
BLOCK_TAGS = ["p", "h1", "h2", "h3", "h4", "h5", "h6", "li", "blockquote"]
_WHITESPACE_RE = re.compile(r"\s+")


def range_reference(spine_index: int, paragraph_index: int) -> str:
    return f"epubcfi(/6/{(spine_index + 1) * 2}!/4/{(paragraph_index + 1) * 2})"


def _rootfile_path(archive: zipfile.ZipFile) -> str:
    try:
        container = ET.fromstring(archive.read("META-INF/container.xml"))
    except KeyError as exc:
        raise BackendError("EPUB is missing META-INF/container.xml.") from exc
    rootfile = container.find(f".//{{{CONTAINER_NS}}}rootfile")
    if rootfile is None or not rootfile.get("full-path"):
        raise BackendError("EPUB container does not name a package document.")
    return rootfile.get("full-path", "")


def _block_texts(markup: bytes) -> list[str]:
    soup = BeautifulSoup(markup, "html.parser")
    body = soup.body or soup
    texts: list[str] = []
    for tag in body.find_all(BLOCK_TAGS):
        if tag.find_parent(BLOCK_TAGS) is not None:
            continue
        text = _WHITESPACE_RE.sub(" ", tag.get_text(separator=" ", strip=True)).strip()
        if text:
            texts.append(text)
    return texts


def read_epub(path: Path) -> tuple[str, list[list[TextRange]]]:
    """Return the title and, per spine document, its block ranges."""
    if not zipfile.is_zipfile(path):
        raise BackendError(f"Not an EPUB archive: {path}")
    with zipfile.ZipFile(path) as archive:
        opf_path = _rootfile_path(archive)
        try:
            package = ET.fromstring(archive.read(opf_path))
        except (KeyError, ET.ParseError) as exc:
            raise BackendError(f"Cannot read package document {opf_path}.") from exc
        base_dir = posixpath.dirname(opf_path)

        title_node = package.find(f".//{{{DC_NS}}}title")
        title = title_node.text.strip() if title_node is not None and title_node.text else path.stem

        manifest = {
            item.get("id"): item.get("href", "")
            for item in package.findall(f".//{{{OPF_NS}}}manifest/{{{OPF_NS}}}item")
        }
        chapters: list[list[TextRange]] = []
        itemrefs = package.findall(f".//{{{OPF_NS}}}spine/{{{OPF_NS}}}itemref")
        for spine_index, itemref in enumerate(itemrefs):
            href = manifest.get(itemref.get("idref"))
            if not href:
                continue
            member = posixpath.normpath(posixpath.join(base_dir, href))
            try:
                markup = archive.read(member)
            except KeyError:
                logger.warning("Spine document %s is missing from the archive.", member)
                continue
            chapters.append(
                [
                    TextRange(text=text, cfi_range=range_reference(spine_index, index))
                    for index, text in enumerate(_block_texts(markup))
                ]
            )
    return title, chapters


def paginate(chapters: list[list[TextRange]], chars_per_view: int) -> list[list[TextRange]]:
    views: list[list[TextRange]] = []
    for chapter in chapters:
        view: list[TextRange] = []
        size = 0
        for item in chapter:
            if view and size + len(item.text) > chars_per_view:
                views.append(view)
                view = []
                size = 0
            view.append(item)
            size += len(item.text)
        if view:
            views.append(view)
    return views


class EpubBackend(ReflowableBackend):
    def __init__(self, path: Path, chars_per_view: int = DEFAULT_CHARS_PER_VIEW) -> None:
        self.path = Path(path)
        self.title, chapters = read_epub(self.path)
        self._views = paginate(chapters, chars_per_view)
        if not self._views:
            raise BackendError(f"No readable text found in {self.path}.")
        self._index = 0
        self.highlights: set[str] = set()

    @property
    def view_count(self) -> int:
        return len(self._views)

    @property
    def view_index(self) -> int:
        return self._index

    async def display(self, location: str | None = None) -> None:
        self._index = 0
        if not location:
            return
        for index, view in enumerate(self._views):
            if any(item.cfi_range == location for item in view):
                self._index = index
                return
        logger.info("Saved location %s not found; starting at the beginning.", location)

    def current_ranges(self) -> list[TextRange]:
        return list(self._views[self._index])

    async def adjacent_ranges(self, step: int) -> list[TextRange]:
        target = self._index + step
        if 0 <= target < len(self._views):
            return list(self._views[target])
        return []

    async def next(self) -> bool:
        if self._index + 1 >= len(self._views):
            return False
        self._index += 1
        return True

    async def prev(self) -> bool:
        if self._index == 0:
            return False
        self._index -= 1
        return True

    def current_location(self) -> str | None:
        return self._views[self._index][0].cfi_range

    async def add_highlight(self, cfi_range: str) -> None:
        self.highlights.add(cfi_range)

    async def remove_highlight(self, cfi_range: str) -> None:
        self.highlights.discard(cfi_range)
