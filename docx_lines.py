from io import BytesIO
from typing import List

from docx import Document
from docx.table import Table
from docx.text.paragraph import Paragraph as DocxParagraph

# Every .docx is a zip archive.
DOCX_SIGNATURE = b"PK\x03\x04"


# ===================== BASIC DOCX HELPERS =====================

def looks_like_docx(data: bytes) -> bool:
    return bool(data) and data[:4] == DOCX_SIGNATURE


def load_document_from_bytes(data: bytes) -> Document:
    """Create a python-docx Document from raw .docx bytes."""
    if not looks_like_docx(data):
        raise ValueError("Invalid DOCX file format. File must be a valid .docx document.")
    file_obj = BytesIO(data)
    return Document(file_obj)


def _split_nonempty(text: str) -> List[str]:
    # Soft line breaks inside a paragraph come through as "\n".
    return [line for line in text.splitlines() if line.strip()]


def _table_lines(table: Table) -> List[str]:
    lines: List[str] = []
    for row in table.rows:
        seen_cells = set()
        for cell in row.cells:
            # Merged cells repeat the same underlying element across the row.
            if id(cell._tc) in seen_cells:
                continue
            seen_cells.add(id(cell._tc))
            for block in cell.iter_inner_content():
                if isinstance(block, DocxParagraph):
                    lines.extend(_split_nonempty(block.text))
                elif isinstance(block, Table):
                    lines.extend(_table_lines(block))
    return lines


def extract_lines(doc: Document) -> List[str]:
    """
    Flatten a document into its ordered, non-empty text lines.

    One entry per paragraph (or per soft-broken line inside a paragraph),
    with table cells inlined where the table sits in the body. The order
    is the reading order of the document and is never changed afterwards.
    """
    lines: List[str] = []
    for block in doc.iter_inner_content():
        if isinstance(block, DocxParagraph):
            lines.extend(_split_nonempty(block.text))
        elif isinstance(block, Table):
            lines.extend(_table_lines(block))
    return lines


def extract_lines_from_docx_bytes(data: bytes) -> List[str]:
    return extract_lines(load_document_from_bytes(data))
