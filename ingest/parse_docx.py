from __future__ import annotations

from io import BytesIO

from docx import Document


def parse_docx(data: bytes) -> str:
    doc = Document(BytesIO(data))
    parts: list[str] = [para.text.strip() for para in doc.paragraphs]

    for table in doc.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells]
            parts.append(" | ".join(c for c in cells if c))

    return "\n".join(p for p in parts if p)
