"""
File-backed state providers.

FileStateProvider reads a desired (or snapshot of a live) schema from a
YAML or JSON schema file. StaticStateProvider serves a fixed document.
"""

from __future__ import annotations

import logging
from pathlib import Path

from ..schema.document import SchemaDocument
from ..schema.loader import load_document

logger = logging.getLogger(__name__)


class FileStateProvider:
    """Desired schema read from a schema file.

    Example:
        >>> provider = FileStateProvider("schema/app.yaml")
        >>> doc = provider.load()
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> SchemaDocument:
        """Load and validate the schema file.

        Raises:
            DocumentLoadError: If the file is missing or invalid
        """
        doc = load_document(self.path)
        logger.debug(f"Loaded {len(doc.tables)} table(s) from {self.path}")
        return doc

    async def introspect(self) -> SchemaDocument:
        """Serve the file as a live schema snapshot."""
        return self.load()


class StaticStateProvider:
    """Fixed schema document, as desired or live state."""

    def __init__(self, document: SchemaDocument) -> None:
        self.document = document

    def load(self) -> SchemaDocument:
        return self.document

    async def introspect(self) -> SchemaDocument:
        return self.document
