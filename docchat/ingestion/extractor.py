import asyncio
import logging
from abc import ABC, abstractmethod
from io import BytesIO
from typing import List

from docchat.ingestion.chunker import PageText

logger = logging.getLogger(__name__)


class TextExtractor(ABC):
    """Turns raw document bytes into ordered page texts."""

    @abstractmethod
    async def extract(self, content: bytes, file_name: str) -> List[PageText]: ...


class DoclingTextExtractor(TextExtractor):
    def __init__(self):
        self._converter = None

    def _get_converter(self):
        if self._converter is None:
            # Lazy import DocumentConverter to save RAM until the first job
            from docling.document_converter import DocumentConverter

            self._converter = DocumentConverter()
        return self._converter

    def _extract(self, content: bytes, file_name: str) -> List[PageText]:
        from docling.datamodel.base_models import DocumentStream

        result = self._get_converter().convert(DocumentStream(name=file_name, stream=BytesIO(content)))
        doc = result.document # DoclingDocument

        if not doc.pages:
            return [PageText(page_number=1, text=doc.export_to_markdown())]
        return [
            PageText(page_number=page_no, text=doc.export_to_markdown(page_no=page_no))
            for page_no in sorted(doc.pages)
        ]

    async def extract(self, content: bytes, file_name: str) -> List[PageText]:
        # Docling parsing is CPU bound
        pages = await asyncio.to_thread(self._extract, content, file_name)
        logger.info(f"Extracted {len(pages)} page(s) from {file_name}")
        return pages
