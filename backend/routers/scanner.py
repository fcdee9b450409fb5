from fastapi import APIRouter, Depends, File, Header, HTTPException, UploadFile
from pydantic import BaseModel

from backend.decoder import decode_qr_from_frame, frame_from_bytes
from backend.security import require_staff
from backend.services.checkin import CheckInResult
from backend.services.scanner_sessions import end_session, get_pipeline

router = APIRouter(dependencies=[Depends(require_staff)])


class ScanRequest(BaseModel):
    payload: str


class ManualCheckIn(BaseModel):
    student_id: str


def _result_payload(result: CheckInResult | None) -> dict:
    if result is None:
        return {"processed": False, "reason": "cooling_down"}
    return {
        "processed": True,
        "outcome": result.outcome.as_dict(),
        "feedback": result.feedback.as_dict(),
        "ledger_entry": result.ledger_entry.as_dict(),
    }


@router.post("/scanner/scan")
async def scan(payload: ScanRequest, x_session_id: str | None = Header(default=None)):
    if not payload.payload:
        raise HTTPException(status_code=400, detail="Scan payload is empty.")
    pipeline = get_pipeline(x_session_id)
    return _result_payload(await pipeline.handle_scan(payload.payload))


@router.post("/scanner/scan-image")
async def scan_image(
    file: UploadFile = File(...),
    x_session_id: str | None = Header(default=None),
):
    if file.content_type not in ("image/jpeg", "image/png"):
        raise HTTPException(status_code=400, detail="Upload JPG/PNG only.")

    data = await file.read()
    frame = frame_from_bytes(data)
    if frame is None:
        raise HTTPException(status_code=400, detail="Invalid image data.")

    text, reason = decode_qr_from_frame(frame)
    if not text:
        # nothing decoded: not a decode event, the client keeps streaming frames
        return {"processed": False, "reason": reason}

    pipeline = get_pipeline(x_session_id)
    return _result_payload(await pipeline.handle_scan(text))


@router.post("/scanner/manual")
async def manual_check_in(payload: ManualCheckIn, x_session_id: str | None = Header(default=None)):
    if not payload.student_id.strip():
        raise HTTPException(status_code=400, detail="Select a student first.")
    pipeline = get_pipeline(x_session_id)
    return _result_payload(await pipeline.handle_manual(payload.student_id))


@router.get("/scanner/ledger")
def ledger(x_session_id: str | None = Header(default=None)):
    pipeline = get_pipeline(x_session_id)
    return {
        "state": pipeline.state,
        "counts": pipeline.ledger.counts(),
        "entries": [e.as_dict() for e in pipeline.ledger.all()],
    }


@router.delete("/scanner/session")
def close_session(x_session_id: str | None = Header(default=None)):
    return {"ok": True, "ended": end_session(x_session_id)}
