from __future__ import annotations

from io import BytesIO

from pptx import Presentation
from pptx.shapes.group import GroupShape


def _shape_texts(shapes) -> list[str]:
    texts: list[str] = []
    for shape in shapes:
        if isinstance(shape, GroupShape):
            texts.extend(_shape_texts(shape.shapes))
            continue
        if getattr(shape, "has_table", False):
            for row in shape.table.rows:
                texts.extend(cell.text.strip() for cell in row.cells)
            continue
        if getattr(shape, "has_text_frame", False):
            texts.append(shape.text_frame.text.strip())
    return [t for t in texts if t]


def parse_pptx(data: bytes) -> str:
    prs = Presentation(BytesIO(data))
    slides: list[str] = []

    for slide in prs.slides:
        slide_text = "\n".join(_shape_texts(slide.shapes))
        if slide_text:
            slides.append(slide_text)

    # A deck without any text is legitimately empty, not a parse failure.
    return "\n\n".join(slides)
