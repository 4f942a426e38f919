"""
Overlay renderer for reconciliation results.

Draws the detected table and every OCR cell on top of the statement
image, colored by reconciliation status.
"""
import io
from typing import Dict, Optional, Tuple

import structlog
from PIL import Image, ImageDraw, UnidentifiedImageError

from statementcalc.exceptions import InvalidImageError
from statementcalc.services.cell_index import BoundingBox
from statementcalc.services.reconciliation import ReconciliationReport, VerdictStatus

logger = structlog.get_logger(__name__)

RGBA = Tuple[int, int, int, int]


class OverlayRenderer:
    """
    Renders a reconciliation report onto the source image with Pillow.

    - Table bounds: dark grey outline
    - Unmatched cells: thin grey outline
    - Verified cells: green outline
    - Mismatched cells: red outline
    """

    TABLE_COLOR: RGBA = (55, 65, 81, 255)
    CELL_FILL: RGBA = (108, 122, 137, 13)
    HOVER_FILL: RGBA = (255, 235, 59, 90)

    STATUS_STYLES: Dict[VerdictStatus, Tuple[RGBA, int]] = {
        VerdictStatus.UNMATCHED: ((128, 128, 128, 255), 1),
        VerdictStatus.VERIFIED: ((0, 128, 0, 255), 2),
        VerdictStatus.MISMATCHED: ((255, 0, 0, 255), 2),
    }

    def render(self, image_bytes: bytes, report: ReconciliationReport) -> bytes:
        """
        Draw the overlay.

        Args:
            image_bytes: Source statement image.
            report: Reconciliation report for the active period.

        Returns:
            PNG bytes of the annotated image.

        Raises:
            InvalidImageError: If the source image cannot be read.
        """
        try:
            with Image.open(io.BytesIO(image_bytes)) as source:
                base = source.convert("RGBA")
        except (UnidentifiedImageError, OSError) as e:
            raise InvalidImageError(f"Image could not be decoded: {e}") from e

        overlay = Image.new("RGBA", base.size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(overlay)
        width, height = base.size
        bounds = report.table_bounds

        if not bounds.is_empty:
            draw.rectangle(self._to_pixels(bounds, width, height), outline=self.TABLE_COLOR, width=2)

        for cell in report.cells:
            page_box = self._to_page(cell.bbox, bounds)
            color, line_width = self.STATUS_STYLES[cell.status]
            fill = self.HOVER_FILL if cell.is_hovered else self.CELL_FILL
            draw.rectangle(
                self._to_pixels(page_box, width, height),
                fill=fill,
                outline=color,
                width=line_width,
            )

        composed = Image.alpha_composite(base, overlay)
        output = io.BytesIO()
        composed.save(output, format="PNG")

        logger.info("Overlay rendered", width=width, height=height, cells=len(report.cells))
        return output.getvalue()

    def _to_page(self, local: BoundingBox, bounds: BoundingBox) -> BoundingBox:
        """Map a table-local box back to page-normalized coordinates."""
        if bounds.is_empty:
            return local
        return BoundingBox(
            top=bounds.top + local.top * bounds.height,
            left=bounds.left + local.left * bounds.width,
            width=local.width * bounds.width,
            height=local.height * bounds.height,
        )

    def _to_pixels(self, box: BoundingBox, width: int, height: int) -> Tuple[float, float, float, float]:
        return (
            box.left * width,
            box.top * height,
            box.right * width,
            box.bottom * height,
        )


# Singleton instance
_renderer_instance: Optional[OverlayRenderer] = None


def get_overlay_renderer() -> OverlayRenderer:
    """Get singleton OverlayRenderer instance."""
    global _renderer_instance
    if _renderer_instance is None:
        _renderer_instance = OverlayRenderer()
    return _renderer_instance
