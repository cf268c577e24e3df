"""Classification endpoints."""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field, ValidationError

from ..exceptions import DecodeError
from ..services.inference_service import ClassificationResult, ClassifyOutcome
from ..utils.frames import EncodedImage, YuvFrame

logger = logging.getLogger(__name__)

router = APIRouter()


class FrameMetadata(BaseModel):
    """Geometry of a planar frame sent as one concatenated Y+U+V blob."""
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    y_length: int = Field(ge=0)
    u_length: int = Field(ge=0)
    v_length: int = Field(ge=0)
    uv_row_stride: int = Field(gt=0)
    uv_pixel_stride: int = Field(gt=0)
    y_row_stride: Optional[int] = Field(None, gt=0)
    y_pixel_stride: int = Field(1, gt=0)
    rotation: int = 0
    top_k: Optional[int] = Field(None, ge=1)
    stream: bool = False


class ClassifyResponse(BaseModel):
    """Classification response."""
    outcome: str
    candidates: List[Dict[str, Any]]
    elapsed_ms: float
    error: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None


def _to_response(result: ClassificationResult) -> ClassifyResponse:
    if result.outcome == ClassifyOutcome.FAILED:
        status_code = 400 if isinstance(result.error, DecodeError) else 500
        raise HTTPException(status_code=status_code, detail=result.error.to_dict())
    if result.outcome == ClassifyOutcome.DROPPED and (result.reason or "").startswith("session"):
        raise HTTPException(status_code=503, detail=f"Classifier unavailable: {result.reason}")
    return ClassifyResponse(**result.to_dict())


@router.post("/classify", response_model=ClassifyResponse)
async def classify_image(
    request: Request,
    file: UploadFile = File(...),
    top_k: Optional[int] = Form(None, ge=1),
):
    """Classify an uploaded photo (JPEG, PNG, ...)."""
    service = request.app.state.inference_service

    data = await file.read()
    result = await run_in_threadpool(service.classify, EncodedImage(data), top_k)
    return _to_response(result)


@router.post("/classify/frame", response_model=ClassifyResponse)
async def classify_frame(
    request: Request,
    metadata: str = Form(...),
    planes: UploadFile = File(...),
):
    """Classify a planar YUV 4:2:0 camera frame sent as raw binary data.

    The 'planes' part holds the Y, U and V planes concatenated in that
    order. The 'metadata' form field is a JSON string with:
    - width, height: int
    - y_length, u_length, v_length: byte length of each plane
    - uv_row_stride, uv_pixel_stride: chroma plane strides
    - y_row_stride (optional, defaults to width), y_pixel_stride (default 1)
    - rotation: clockwise sensor rotation in degrees (default 0)
    - top_k (optional), stream: apply the stream throttle (default false)
    """
    service = request.app.state.inference_service

    try:
        meta = FrameMetadata.model_validate_json(metadata)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors())

    raw_bytes = await planes.read()
    expected_size = meta.y_length + meta.u_length + meta.v_length
    if len(raw_bytes) != expected_size:
        raise HTTPException(
            status_code=400,
            detail="Buffer size mismatch: expected %d bytes but got %d bytes" % (
                expected_size, len(raw_bytes))
        )

    u_start = meta.y_length
    v_start = u_start + meta.u_length
    frame = YuvFrame(
        width=meta.width,
        height=meta.height,
        y_plane=raw_bytes[:u_start],
        u_plane=raw_bytes[u_start:v_start],
        v_plane=raw_bytes[v_start:],
        uv_row_stride=meta.uv_row_stride,
        uv_pixel_stride=meta.uv_pixel_stride,
        y_row_stride=meta.y_row_stride,
        y_pixel_stride=meta.y_pixel_stride,
        rotation=meta.rotation,
    )

    if meta.stream:
        result = await run_in_threadpool(service.classify_stream_frame, frame, meta.top_k)
    else:
        result = await run_in_threadpool(service.classify, frame, meta.top_k)
    return _to_response(result)
