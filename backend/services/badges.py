import io
import json
import time

import qrcode

BADGE_SETTINGS = {
    "error_correction": qrcode.constants.ERROR_CORRECT_M,  # ~15% error correction
    "box_size": 10,
    "border": 4,
    "fill_color": "black",
    "back_color": "white",
}


def badge_payload(student_id: str, name: str, class_name: str | None = None) -> str:
    """JSON text printed on a student's badge; the scanner reads ``studentId`` from it."""
    return json.dumps(
        {
            "studentId": student_id,
            "name": name,
            "className": class_name or "",
            "timestamp": int(time.time() * 1000),
        },
        ensure_ascii=False,
        separators=(",", ":"),
    )


def render_badge_png(payload: str) -> bytes:
    qr = qrcode.QRCode(
        version=None,
        error_correction=BADGE_SETTINGS["error_correction"],
        box_size=BADGE_SETTINGS["box_size"],
        border=BADGE_SETTINGS["border"],
    )
    qr.add_data(payload)
    qr.make(fit=True)
    img = qr.make_image(
        fill_color=BADGE_SETTINGS["fill_color"],
        back_color=BADGE_SETTINGS["back_color"],
    )
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()
