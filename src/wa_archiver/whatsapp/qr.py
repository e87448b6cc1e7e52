"""Render pairing QR payloads as PNG images."""

from __future__ import annotations

import base64
import io

import qrcode

DATA_URL_PREFIX = "data:image/png;base64,"


def render_qr_png(payload: str) -> bytes:
    image = qrcode.make(payload, box_size=10, border=2)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def png_to_data_url(png: bytes) -> str:
    return DATA_URL_PREFIX + base64.b64encode(png).decode("ascii")


def data_url_to_png(data_url: str) -> bytes:
    if not data_url.startswith(DATA_URL_PREFIX):
        raise ValueError("not a PNG data URL")
    return base64.b64decode(data_url[len(DATA_URL_PREFIX):])
