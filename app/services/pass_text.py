"""Script-aware text drawing for visitor passes.

Member names arrive in Latin, Devanagari (Marathi/Hindi), Gujarati or
Kannada. reportlab's built-in fonts only cover Latin, and it does not
shape Indic conjuncts, so non-Latin names are rasterized with Pillow
(RAQM layout when available) and embedded as an image.

Adding a script means adding one SCRIPT_RENDERERS entry.
"""

import logging
import os
import unicodedata

from PIL import Image, ImageDraw, ImageFont, features
from reportlab.lib.colors import HexColor
from reportlab.lib.utils import ImageReader

logger = logging.getLogger(__name__)

# Pixels per point when rasterizing
RASTER_SCALE = 4


def detect_script(text):
    """Return the first non-Latin script found in text, else "latin".

    Script names come from the Unicode character names, lowercased,
    e.g. "devanagari", "gujarati", "kannada".
    """
    for ch in text or "":
        if ord(ch) < 0x250 or not unicodedata.category(ch).startswith(("L", "M")):
            continue
        name = unicodedata.name(ch, "")
        if name:
            return name.split(" ", 1)[0].lower()
    return "latin"


class StandardFontRenderer:
    """Draws text with a reportlab built-in font."""

    def __init__(self, font_name="Helvetica-Bold"):
        self.font_name = font_name

    def draw_centered(self, canvas, text, center_x, y, size, color="#111827"):
        canvas.setFont(self.font_name, size)
        canvas.setFillColor(HexColor(color))
        canvas.drawCentredString(center_x, y, text)


class RasterTextRenderer:
    """Rasterizes text with a TrueType font and places it as an image."""

    def __init__(self, font_file, fallback=None):
        self.font_file = font_file
        self.fallback = fallback or StandardFontRenderer()

    def _load_font(self, font_dir, pixel_size):
        font_path = os.path.join(font_dir or "", self.font_file)
        if not os.path.isfile(font_path):
            return None
        layout = (
            ImageFont.Layout.RAQM if features.check("raqm") else ImageFont.Layout.BASIC
        )
        return ImageFont.truetype(font_path, pixel_size, layout_engine=layout)

    def draw_centered(self, canvas, text, center_x, y, size, color="#111827", font_dir=None):
        font = self._load_font(font_dir, size * RASTER_SCALE)
        if font is None:
            logger.warning(
                f"Font {self.font_file} not found in {font_dir!r}; "
                f"drawing with the standard font"
            )
            self.fallback.draw_centered(canvas, text, center_x, y, size, color)
            return

        # bbox relative to the left baseline: top is negative, descent positive
        x0, top, x1, descent = font.getbbox(text, anchor="ls")
        width_px = max(1, x1 - x0)
        height_px = max(1, descent - top)

        img = Image.new("RGBA", (width_px, height_px), (255, 255, 255, 0))
        ImageDraw.Draw(img).text((-x0, -top), text, font=font, fill=color, anchor="ls")

        width_pt = width_px / RASTER_SCALE
        height_pt = height_px / RASTER_SCALE
        canvas.drawImage(
            ImageReader(img),
            center_x - width_pt / 2,
            y - descent / RASTER_SCALE,
            width=width_pt,
            height=height_pt,
            mask="auto",
        )


SCRIPT_RENDERERS = {
    "latin": StandardFontRenderer(),
    "devanagari": RasterTextRenderer("NotoSansDevanagari-Bold.ttf"),
    "gujarati": RasterTextRenderer("NotoSansGujarati-Bold.ttf"),
    "kannada": RasterTextRenderer("NotoSansKannada-Bold.ttf"),
}


def renderer_for(text):
    """Pick the renderer for the script detected in text."""
    script = detect_script(text)
    renderer = SCRIPT_RENDERERS.get(script)
    if renderer is None:
        logger.warning(f"No renderer for script {script!r}; using standard font")
        renderer = SCRIPT_RENDERERS["latin"]
    return renderer


def draw_centered_text(canvas, text, center_x, y, size, color="#111827", font_dir=None):
    """Draw one line of text centered on center_x, with baseline at y."""
    renderer = renderer_for(text)
    if isinstance(renderer, RasterTextRenderer):
        renderer.draw_centered(canvas, text, center_x, y, size, color, font_dir=font_dir)
    else:
        renderer.draw_centered(canvas, text, center_x, y, size, color)
