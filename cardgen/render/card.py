from __future__ import annotations

import io
import re
import unicodedata
from typing import Any

from PIL import Image, ImageDraw, ImageFont

from cardgen.errors import RenderError
from cardgen.models.artifact import Artifact, ArtifactFormat
from cardgen.models.config_models import RenderConfig, SpreadsheetConfig
from cardgen.models.row_record import RowRecord
from cardgen.models.logo_asset import LogoAsset

"""Card renderer: one RowRecord (+ optional supplier logo) -> one Artifact.

Layout (proportional to the configured card size):

  +--------------------------------+
  | header band: code      [logo]  |
  |                                |
  | title (label column, wrapped)  |
  | detail lines                   |
  |                                |
  |                  R$ price      |
  +--------------------------------+

Rendering is a pure function of the row, the logo bytes and the config. Fonts are
loaded per call so concurrent renders share no mutable objects. PNG output carries
no timestamps and PDF output is written with fixed metadata, so the same input
always yields the same bytes.
"""

__all__ = [
    "CardRenderer",
    "artifact_filename",
    "format_price",
]

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def artifact_filename(index: int, label: str, fmt: ArtifactFormat) -> str:
    """``0001_arroz-tipo-1.png``: numbered by row order, ascii-only, bounded length."""
    ascii_label = unicodedata.normalize("NFKD", label).encode("ascii", "ignore").decode("ascii")
    slug = _SLUG_RE.sub("-", ascii_label.lower()).strip("-")[:48].rstrip("-") or "card"
    return f"{index + 1:04d}_{slug}.{fmt.value}"


def format_price(value: Any, prefix: str = "R$") -> str:
    """12.9 -> 'R$ 12,90'; 1234.5 -> 'R$ 1.234,50'. Non-numbers are shown as given."""
    if isinstance(value, bool) or value is None:
        return ""
    if isinstance(value, (int, float)):
        text = f"{value:,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
        return f"{prefix} {text}".strip()
    return str(value)


class CardRenderer:
    def __init__(self, render: RenderConfig, spreadsheet: SpreadsheetConfig) -> None:
        self.render_config = render
        self.spreadsheet_config = spreadsheet
        self.format = ArtifactFormat(render.format)

    def _font(self, size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
        if self.render_config.font_path:
            return ImageFont.truetype(self.render_config.font_path, size)
        return ImageFont.load_default(size)

    @staticmethod
    def _wrap(draw: ImageDraw.ImageDraw, text: str, font: Any, max_width: int, max_lines: int) -> list[str]:
        words = text.split()
        lines: list[str] = []
        current = ""
        for word in words:
            candidate = f"{current} {word}".strip()
            if draw.textlength(candidate, font=font) <= max_width or not current:
                current = candidate
                continue
            lines.append(current)
            current = word
            if len(lines) == max_lines:
                break
        if current and len(lines) < max_lines:
            lines.append(current)
        if len(lines) == max_lines and " ".join(lines) != " ".join(words):
            lines[-1] = lines[-1].rstrip(".") + "..."
        return lines

    def _paste_logo(self, card: Image.Image, logo: LogoAsset, box: tuple[int, int, int, int]) -> None:
        left, top, right, bottom = box
        with Image.open(io.BytesIO(logo.data)) as src:
            mark = src.convert("RGBA")
        mark.thumbnail((right - left, bottom - top), Image.Resampling.LANCZOS)
        x = left + (right - left - mark.width) // 2
        y = top + (bottom - top - mark.height) // 2
        card.paste(mark, (x, y), mark)

    def compose(self, row: RowRecord, logo: LogoAsset | None = None) -> Image.Image:
        """Draw the card image for ``row``; raises RenderError on missing label."""
        cfg = self.render_config
        sheet = self.spreadsheet_config
        label = row.text(sheet.label_column)
        if not label:
            raise RenderError(f"row {row.index}: empty label column '{sheet.label_column}'", row_index=row.index)

        w, h = cfg.width, cfg.height
        pad = w // 20
        header_h = h * 16 // 100

        card = Image.new("RGB", (w, h), cfg.background)
        draw = ImageDraw.Draw(card)

        # Header band
        draw.rectangle((0, 0, w, header_h), fill=cfg.accent)
        code = row.text(sheet.code_column)
        if code:
            draw.text((pad, header_h // 2), f"Cód. {code}", font=self._font(h // 30), fill="#ffffff", anchor="lm")

        if logo is not None:
            logo_box = (w * 62 // 100, header_h // 8, w - pad, header_h - header_h // 8)
            draw.rounded_rectangle(logo_box, radius=header_h // 10, fill="#ffffff")
            inset = header_h // 16
            self._paste_logo(card, logo, (logo_box[0] + inset, logo_box[1] + inset, logo_box[2] - inset, logo_box[3] - inset))

        # Title
        title_font = self._font(h // 18)
        y = header_h + pad
        line_h = h // 18 + h // 60
        for line in self._wrap(draw, label, title_font, w - 2 * pad, max_lines=4):
            draw.text((pad, y), line, font=title_font, fill=cfg.text_color)
            y += line_h

        # Details
        detail_font = self._font(h // 34)
        y += pad // 2
        for column in sheet.detail_columns:
            value = row.text(column)
            if not value:
                continue
            draw.text((pad, y), f"{column.capitalize()}: {value}", font=detail_font, fill=cfg.text_color)
            y += h // 34 + h // 80

        # Price
        price = format_price(row.get(sheet.price_column), cfg.price_prefix)
        if price:
            price_font = self._font(h // 9)
            draw.line((pad, h - h // 4, w - pad, h - h // 4), fill=cfg.accent, width=max(2, h // 300))
            draw.text((w - pad, h - h // 8), price, font=price_font, fill=cfg.accent, anchor="rm")
        return card

    def encode(self, card: Image.Image, label: str) -> bytes:
        buf = io.BytesIO()
        if self.format is ArtifactFormat.PDF:
            card.save(
                buf,
                format="PDF",
                resolution=float(self.render_config.dpi),
                title=label,
                creationDate=None,
                modDate=None,
            )
        else:
            card.save(buf, format="PNG", dpi=(self.render_config.dpi, self.render_config.dpi))
        return buf.getvalue()

    def render(self, row: RowRecord, logo: LogoAsset | None = None) -> Artifact:
        label = row.text(self.spreadsheet_config.label_column)
        try:
            card = self.compose(row, logo)
            data = self.encode(card, label)
        except RenderError:
            raise
        except (OSError, ValueError, TypeError) as e:
            raise RenderError(f"row {row.index}: image composition failed: {e}", row_index=row.index) from e
        return Artifact(
            index=row.index,
            label=label,
            filename=artifact_filename(row.index, label, self.format),
            data=data,
            format=self.format,
        )
