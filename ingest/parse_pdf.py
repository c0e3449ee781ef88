from __future__ import annotations

import fitz


def parse_pdf(data: bytes) -> str:
    pages: list[str] = []

    doc = fitz.open(stream=data, filetype="pdf")
    try:
        for page in doc:
            native_text = page.get_text("text").strip()
            if native_text:
                pages.append(native_text)
    finally:
        doc.close()

    return "\n".join(pages)
