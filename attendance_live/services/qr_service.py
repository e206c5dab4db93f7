import io

import segno


def render_credential_png(credential: str, scale: int = 7, border: int = 2) -> bytes:
    qr = segno.make(credential, error="m")
    buffer = io.BytesIO()
    qr.save(buffer, kind="png", scale=scale, border=border)
    return buffer.getvalue()
