import cv2 # type: ignore
import numpy as np # type: ignore

# OpenCV's built-in QR detector (offline, no model file)
QR_DETECTOR = cv2.QRCodeDetector()


def frame_from_bytes(data: bytes):
    """Decode JPG/PNG bytes into a BGR frame, or None when the bytes are not an image."""
    if not data:
        return None
    img_array = np.frombuffer(data, np.uint8)
    return cv2.imdecode(img_array, cv2.IMREAD_COLOR)


def decode_qr_from_frame(frame_bgr):
    """
    Returns:
      (decoded_text:str|None, reason:str|None)
    """
    if frame_bgr is None or frame_bgr.size == 0:
        return None, "invalid_frame"

    text, points, _ = QR_DETECTOR.detectAndDecode(frame_bgr)
    if text:
        return text, None

    # retry on grayscale; helps with low-contrast prints
    gray = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2GRAY)
    text, points, _ = QR_DETECTOR.detectAndDecode(gray)
    if text:
        return text, None

    if points is None:
        return None, "no_code"
    return None, "unreadable_code"
