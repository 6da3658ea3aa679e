"""QR code rendering for provisioning URIs.

A presentation helper over the ``otpauth://`` URI. Requires the ``qr``
extra: ``pip install twofactor-core[qr]``.
"""

from __future__ import annotations

import base64
import io
from typing import Any


def _get_qrcode() -> Any:
    """Lazy import qrcode."""
    try:
        import qrcode

        return qrcode
    except ImportError as e:
        raise ImportError(
            "qrcode is required for QR rendering. "
            "Install with: pip install twofactor-core[qr]"
        ) from e


def render_png(uri: str, *, box_size: int = 10, border: int = 1) -> bytes:
    """Render a provisioning URI as a PNG image.

    Args:
        uri: ``otpauth://totp/...`` URI.
        box_size: Pixels per QR module.
        border: Quiet zone width in modules.

    Returns:
        PNG bytes, medium error correction, black on white.
    """
    qrcode = _get_qrcode()
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(uri)
    qr.make(fit=True)
    image = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def render_data_uri(uri: str, **kwargs: Any) -> str:
    """Render a provisioning URI as a ``data:image/png;base64,...`` URI."""
    encoded = base64.b64encode(render_png(uri, **kwargs)).decode("ascii")
    return f"data:image/png;base64,{encoded}"


__all__: list[str] = ["render_png", "render_data_uri"]
