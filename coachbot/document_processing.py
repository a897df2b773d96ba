"""Training document decoding and text chunking functionality."""

import io

import pypdf
from pypdf.errors import PyPdfError

from .config import config
from .errors import ValidationError
from .models import FileKind

logger = config.get_logger(__name__)

DEFAULT_MAX_CHUNKS = 10_000


class DocumentLoader:
    """Handles decoding of uploaded PDF and text training files."""

    @staticmethod
    def load_pdf(data: bytes) -> str:
        """Extract text content from PDF bytes.

        Returns:
            The extracted text content from the PDF as a string.

        Raises:
            ValidationError: If the bytes are not a readable PDF.
        """
        try:
            pdf_reader = pypdf.PdfReader(io.BytesIO(data))
            pages = [page.extract_text() or "" for page in pdf_reader.pages]
        except (PyPdfError, ValueError) as exc:
            logger.exception("Error parsing PDF upload")
            msg = "Failed to parse PDF file"
            raise ValidationError(msg, details=str(exc)) from exc
        return "\n".join(pages)

    @staticmethod
    def load_txt(data: bytes) -> str:
        """Decode text content from an uploaded text file.

        Returns:
            The decoded text, undecodable bytes replaced.
        """
        return data.decode("utf-8", errors="replace")

    @classmethod
    def load_upload(
        cls,
        data: bytes,
        *,
        file_name: str | None = None,
        content_type: str | None = None,
    ) -> tuple[str, FileKind]:
        """Decode an upload based on its content type or file extension.

        Args:
            data: Raw uploaded bytes.
            file_name: Original file name, used when the content type is vague.
            content_type: MIME type reported by the client.

        Returns:
            Tuple of (text content, file kind).
        """
        is_pdf = content_type == "application/pdf" or (
            file_name is not None and file_name.lower().endswith(".pdf")
        )
        if is_pdf:
            return cls.load_pdf(data), FileKind.PDF
        return cls.load_txt(data), FileKind.TEXT


def chunk_text(
    text: str,
    chunk_size: int = 1000,
    overlap: int = 200,
    max_chunks: int = DEFAULT_MAX_CHUNKS,
) -> list[str]:
    """Split text into overlapping fixed-size windows.

    Overlap is clamped below chunk_size so every step advances at least one
    character. The window that reaches the end of the text is the last one.
    Stops early after ``max_chunks`` iterations and returns the chunks
    produced so far.

    Returns:
        Ordered list of non-empty chunks.

    Raises:
        ValidationError: If chunk_size is not positive or overlap is negative.
    """
    if chunk_size <= 0:
        msg = f"chunk_size must be positive, got {chunk_size}"
        raise ValidationError(msg)
    if overlap < 0:
        msg = f"overlap must not be negative, got {overlap}"
        raise ValidationError(msg)

    safe_overlap = min(overlap, max(1, chunk_size - 1))
    chunks: list[str] = []
    start = 0
    iterations = 0

    while start < len(text) and iterations < max_chunks:
        iterations += 1
        end = min(start + chunk_size, len(text))
        chunk = text[start:end]

        if chunk:
            chunks.append(chunk)

        if end >= len(text):
            break

        next_start = end - safe_overlap
        start = start + 1 if next_start <= start else next_start
    else:
        if start < len(text):
            logger.warning(
                "Chunking stopped after %d iterations; %d of %d characters covered",
                max_chunks,
                start,
                len(text),
            )

    return chunks


class TextChunker:
    """Handles text chunking with fixed length and overlap strategy."""

    def __init__(
        self,
        chunk_size: int = 1000,
        overlap: int = 200,
        max_chunks: int = DEFAULT_MAX_CHUNKS,
    ) -> None:
        """Initialize the TextChunker with chunk size and overlap.

        Args:
            chunk_size: The size of each text chunk.
            overlap: The number of overlapping characters between chunks.
            max_chunks: Iteration ceiling guarding against pathological input.
        """
        self.chunk_size = chunk_size
        self.overlap = overlap
        self.max_chunks = max_chunks

    def chunk(self, text: str) -> list[str]:
        """Split text into overlapping chunks.

        Returns:
            A list of chunk strings in document order.
        """
        chunks = chunk_text(
            text,
            chunk_size=self.chunk_size,
            overlap=self.overlap,
            max_chunks=self.max_chunks,
        )
        logger.info("Text split into %d chunks", len(chunks))
        return chunks
