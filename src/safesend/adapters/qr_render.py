"""Pairing payload rendering with qrcode."""

from __future__ import annotations

import base64
import io

import qrcode
import qrcode.image.svg
from qrcode.constants import ERROR_CORRECT_M


def _build_qr(payload: str) -> qrcode.QRCode:
    qr = qrcode.QRCode(
        border=1,
        error_correction=ERROR_CORRECT_M,
    )
    qr.add_data(payload)
    qr.make(fit=True)
    return qr


def render_data_url(payload: str) -> str:
    """Return the payload as an SVG QR code data URL for web clients."""

    qr = _build_qr(payload)
    image = qr.make_image(image_factory=qrcode.image.svg.SvgPathImage)
    svg = image.to_string(encoding="unicode")
    encoded = base64.b64encode(svg.encode("utf-8")).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"


def render_ascii(payload: str) -> str:
    """Return the payload as a terminal QR code."""

    out = io.StringIO()
    _build_qr(payload).print_ascii(out=out, invert=True)
    return out.getvalue()
