"""Shared fixtures for snakeid_server tests.

This module provides pytest fixtures for:
- A temporary assets directory (label list, reference table, model stub)
- Fake model runtimes with fixed, failing or blocking behaviour
- Classifier sessions wired to an injected model loader
- Synthetic YUV frames and encoded images
- Test client for FastAPI endpoints
"""

import io
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import numpy as np
import pytest
from PIL import Image

from snakeid_server.config import SessionConfig
from snakeid_server.services.model_runtime import (
    LabelOutput,
    ModelOutput,
    ModelRuntime,
    ScoresOutput,
)
from snakeid_server.utils.frames import YuvFrame

# Import test client only when available
try:
    from fastapi.testclient import TestClient
    from snakeid_server.main import create_app
    FASTAPI_AVAILABLE = True
except ImportError:
    FASTAPI_AVAILABLE = False


LABELS = ["Cobra", "King_Cobra", "Rat_Snake"]

REFERENCE_CSV = (
    "Name,Scientific Name,Venom,Details\n"
    "Cobra,Naja naja,High,Hood displayed when threatened\n"
    "King Cobra,Ophiophagus hannah,High,Longest venomous snake\n"
    "Rat Snake,Pantherophis obsoletus,Non,\n"
)


# ==================== Fake models ====================

class FakeModel(ModelRuntime):
    """Returns a fixed score vector and counts calls."""

    def __init__(self, scores: Sequence[float], output_dim: Optional[int] = None):
        self.scores = np.asarray(scores, dtype=np.float64)
        self.output_dim = output_dim
        self.calls: List[np.ndarray] = []

    def predict(self, tensor: np.ndarray) -> ModelOutput:
        self.calls.append(tensor)
        return ScoresOutput(self.scores)


class LabelModel(ModelRuntime):
    """Returns a bare label with no score."""

    def __init__(self, label: str):
        self.label = label

    def predict(self, tensor: np.ndarray) -> ModelOutput:
        return LabelOutput(self.label)


class FailingModel(ModelRuntime):
    """Raises on every call."""

    output_dim = 3

    def predict(self, tensor: np.ndarray) -> ModelOutput:
        raise RuntimeError("delegate crashed")


class BlockingModel(FakeModel):
    """Blocks inside predict until released."""

    def __init__(self, scores: Sequence[float]):
        super().__init__(scores, output_dim=len(scores))
        self.started = threading.Event()
        self.release = threading.Event()

    def predict(self, tensor: np.ndarray) -> ModelOutput:
        self.started.set()
        self.release.wait(timeout=5.0)
        return super().predict(tensor)


def loader_for(model: ModelRuntime) -> Callable:
    """Build a model loader that ignores the path and returns ``model``."""
    def _loader(path, device_manager):
        return model
    return _loader


# ==================== Assets ====================

@pytest.fixture
def assets_dir(tmp_path) -> Path:
    """Assets directory with labels, reference table and a model stub.

    The model file only has to exist; tests inject a loader for it.
    """
    directory = tmp_path / "assets"
    directory.mkdir()
    (directory / "class_names.txt").write_text("\n".join(LABELS) + "\n", encoding="utf-8")
    (directory / "Snake_Names_And_Venom.csv").write_text(REFERENCE_CSV, encoding="utf-8")
    (directory / "snake_model.onnx").write_bytes(b"")
    return directory


@pytest.fixture
def session_config(assets_dir) -> SessionConfig:
    """Session configuration pointing at the temporary assets."""
    return SessionConfig(
        assets_dir=str(assets_dir),
        input_size=32,
        load_timeout_s=5.0,
        device="cpu",
    )


@pytest.fixture
def make_session(session_config):
    """Factory for ClassifierSession instances with an injected model.

    Keyword arguments other than ``model`` and ``loader`` override fields
    of the session config.
    """
    from dataclasses import replace

    from snakeid_server.services.device_manager import DeviceManager
    from snakeid_server.services.session import ClassifierSession

    created = []

    def _make(model: Optional[ModelRuntime] = None, loader: Optional[Callable] = None,
              **overrides):
        if loader is None:
            loader = loader_for(model if model is not None else FakeModel([2.0, 0.5, 0.1]))
        session = ClassifierSession(
            config=replace(session_config, **overrides),
            model_loader=loader,
            device_manager=DeviceManager("cpu"),
        )
        created.append(session)
        return session

    yield _make

    for session in created:
        session.close()


@pytest.fixture
def ready_session(make_session):
    """A loaded session whose model prefers "Cobra"."""
    session = make_session(FakeModel([2.0, 0.5, 0.1]))
    session.load()
    return session


@pytest.fixture
def wait_for_state():
    """Poll a session until it reaches one of the given states."""
    def _wait(session, states, timeout: float = 5.0) -> bool:
        wanted = {s.value if hasattr(s, "value") else s for s in states}
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if session.state.value in wanted:
                return True
            time.sleep(0.01)
        return False
    return _wait


# ==================== Frames ====================

@pytest.fixture
def make_yuv_frame():
    """Factory for uniform planar YUV 4:2:0 frames with tight strides."""
    def _make(width: int = 4, height: int = 4, y: int = 128, u: int = 128, v: int = 128,
              rotation: int = 0) -> YuvFrame:
        chroma_w = (width + 1) // 2
        chroma_h = (height + 1) // 2
        return YuvFrame(
            width=width,
            height=height,
            y_plane=bytes([y]) * (width * height),
            u_plane=bytes([u]) * (chroma_w * chroma_h),
            v_plane=bytes([v]) * (chroma_w * chroma_h),
            uv_row_stride=chroma_w,
            uv_pixel_stride=1,
            rotation=rotation,
        )
    return _make


@pytest.fixture
def jpeg_bytes() -> bytes:
    """A small encoded JPEG photo."""
    np.random.seed(42)
    img = np.random.randint(50, 200, (48, 64, 3), dtype=np.uint8)
    buffer = io.BytesIO()
    Image.fromarray(img).save(buffer, format="JPEG")
    return buffer.getvalue()


# ==================== API ====================

@pytest.fixture
def client(session_config, wait_for_state):
    """FastAPI test client fixture with lifespan context.

    Uses context manager to run the lifespan, then waits for the
    background session load to settle.
    """
    if not FASTAPI_AVAILABLE:
        pytest.skip("FastAPI test client not available")

    app = create_app(session_config, model_loader=loader_for(FakeModel([2.0, 0.5, 0.1])))
    with TestClient(app) as client:
        wait_for_state(app.state.session, ["ready", "failed"])
        yield client


@pytest.fixture
def failed_client(tmp_path, wait_for_state):
    """Test client whose session failed to load (empty assets directory)."""
    if not FASTAPI_AVAILABLE:
        pytest.skip("FastAPI test client not available")

    empty = tmp_path / "empty_assets"
    empty.mkdir()
    config = SessionConfig(assets_dir=str(empty), load_timeout_s=5.0, device="cpu")
    app = create_app(config, model_loader=loader_for(FakeModel([1.0])))
    with TestClient(app) as client:
        wait_for_state(app.state.session, ["failed"])
        yield client
