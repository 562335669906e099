"""
Bulk ingestion of knowledge files using LangChain.

Files under DOCUMENTS_DIR (.pdf, .txt, .md) are split into chunks and each
chunk is added through DocumentService, so dedup and vector pairing hold
for ingested knowledge exactly as for single documents.
"""

import asyncio
import hashlib
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from langchain_community.document_loaders import PyPDFLoader
from langchain_text_splitters import RecursiveCharacterTextSplitter

from saju_rag.config import settings
from saju_rag.errors import DuplicateDocumentError, RagError
from saju_rag.rag.documents import DocumentService

logger = logging.getLogger(__name__)


SUPPORTED_EXTENSIONS = {".pdf", ".txt", ".md"}
MIN_CHUNK_CHARS = 20


class DocumentIngester:
    """Chunks knowledge files and feeds them to the document service."""

    def __init__(self, service: DocumentService, documents_path: Optional[Path] = None):
        self.service = service
        self.documents_path = Path(documents_path or settings.DOCUMENTS_DIR)
        self.processed_path = self.documents_path / ".processed"

        self.text_splitter = RecursiveCharacterTextSplitter(
            chunk_size=settings.CHUNK_SIZE,
            chunk_overlap=settings.CHUNK_OVERLAP,
            length_function=len,
            separators=["\n\n", "\n", ". ", " ", ""],
        )

    def _get_file_hash(self, file_path: Path) -> str:
        """Generate hash of file content for change detection."""
        hasher = hashlib.md5()
        with open(file_path, "rb") as f:
            for chunk in iter(lambda: f.read(8192), b""):
                hasher.update(chunk)
        return hasher.hexdigest()

    def _load_processed_hashes(self) -> Dict[str, str]:
        """Load previously processed file hashes."""
        if not self.processed_path.exists():
            return {}
        hashes = {}
        for line in self.processed_path.read_text(encoding="utf-8").splitlines():
            if ":" in line:
                filename, hash_val = line.strip().rsplit(":", 1)
                hashes[filename] = hash_val
        return hashes

    def _save_processed_hashes(self, hashes: Dict[str, str]):
        self.processed_path.write_text(
            "".join(f"{filename}:{hash_val}\n" for filename, hash_val in hashes.items()),
            encoding="utf-8",
        )

    def _split_file(self, file_path: Path) -> List[str]:
        """Load one file and split it into chunk texts."""
        if file_path.suffix.lower() == ".pdf":
            pages = PyPDFLoader(str(file_path)).load()
            pieces = [doc.page_content for doc in self.text_splitter.split_documents(pages)]
        else:
            pieces = self.text_splitter.split_text(file_path.read_text(encoding="utf-8"))
        return [p.strip() for p in pieces if len(p.strip()) >= MIN_CHUNK_CHARS]

    async def ingest_all(self, force: bool = False) -> Dict[str, Any]:
        """
        Ingest every supported file in the documents directory.

        Args:
            force: If True, reprocess all files regardless of hash

        Returns:
            Summary of ingestion results
        """
        results = {
            "processed": [],
            "skipped": [],
            "errors": [],
            "total_chunks": 0,
            "duplicates": 0,
        }

        if not self.documents_path.exists():
            logger.info(f"📂 Documents directory missing: {self.documents_path}")
            return results

        files = sorted(
            p for p in self.documents_path.iterdir()
            if p.is_file() and p.suffix.lower() in SUPPORTED_EXTENSIONS
        )
        if not files:
            logger.info(f"📂 No knowledge files found in {self.documents_path}")
            return results

        processed_hashes = {} if force else self._load_processed_hashes()
        new_hashes = {}

        for file_path in files:
            filename = file_path.name
            file_hash = self._get_file_hash(file_path)

            if processed_hashes.get(filename) == file_hash:
                results["skipped"].append(filename)
                new_hashes[filename] = file_hash
                continue

            try:
                chunks = await asyncio.to_thread(self._split_file, file_path)
            except Exception as e:
                logger.error(f"❌ Failed to read {filename}: {e}")
                results["errors"].append({"file": filename, "error": str(e)})
                continue

            added = 0
            failed = False
            for chunk in chunks:
                try:
                    await self.service.add(chunk)
                    added += 1
                except DuplicateDocumentError:
                    results["duplicates"] += 1
                except RagError as e:
                    logger.error(f"❌ Failed to index chunk of {filename}: {e}")
                    results["errors"].append({"file": filename, "error": str(e)})
                    failed = True
                    break

            results["total_chunks"] += added
            if not failed:
                results["processed"].append(filename)
                new_hashes[filename] = file_hash
            logger.info(f"📄 Processed {filename}: {added} new chunks")

        self._save_processed_hashes(new_hashes)
        return results
