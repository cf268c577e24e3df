"""Classifier session lifecycle.

A session owns the loaded model, label list and reference table and moves
through IDLE -> LOADING -> READY -> [BUSY -> READY]*. Loading runs the model
and reference-table loads in parallel against a deadline; a failure or a
missed deadline moves the session to FAILED, from which retry() re-enters
LOADING.
"""

import logging
import threading
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from ..config import SessionConfig
from ..exceptions import (
    DataLoadError,
    LoadTimeoutError,
    ModelLoadError,
    PipelineError,
)
from .asset_source import AssetSource
from .device_manager import DeviceManager, get_device_manager
from .model_runtime import ModelRuntime, ScoresOutput, load_model
from .reference_table import ReferenceTable, load_reference_table

logger = logging.getLogger(__name__)

ModelLoader = Callable[[Path, DeviceManager], ModelRuntime]


class SessionState(Enum):
    """Classifier session state."""
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    BUSY = "busy"
    FAILED = "failed"
    CLOSED = "closed"


@dataclass
class SessionContext:
    """Loaded, read-only resources shared by all requests of a session."""
    model: ModelRuntime
    labels: List[str]
    reference_table: ReferenceTable
    reference_error: Optional[DataLoadError] = None


class ClassifierSession:
    """Owns the model handle, LabelSet and ReferenceTable for one session."""

    def __init__(
        self,
        config: Optional[SessionConfig] = None,
        asset_source: Optional[AssetSource] = None,
        model_loader: Optional[ModelLoader] = None,
        device_manager: Optional[DeviceManager] = None,
    ):
        self.config = config or SessionConfig()
        self.asset_source = asset_source or AssetSource(
            self.config.assets_dir,
            model_names=self.config.model_names,
            labels_name=self.config.labels_name,
            reference_table_name=self.config.reference_table_name,
        )
        self._model_loader = model_loader or load_model
        if device_manager is None:
            device_manager = (get_device_manager() if self.config.device == "auto"
                              else DeviceManager(self.config.device))
        self.device_manager = device_manager

        self._lock = threading.Lock()
        self._state = SessionState.IDLE
        self._context: Optional[SessionContext] = None
        self._error: Optional[PipelineError] = None
        self._generation = 0
        self._cancel_token = threading.Event()

    # ==================== State ====================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def error(self) -> Optional[PipelineError]:
        """Session-scoped error that moved the session to FAILED."""
        return self._error

    @property
    def context(self) -> Optional[SessionContext]:
        return self._context

    # ==================== Loading ====================

    def load(self, timeout_s: Optional[float] = None) -> SessionContext:
        """Load model, labels and reference table, blocking until done.

        Args:
            timeout_s: Loading deadline (defaults to config.load_timeout_s)

        Returns:
            The published SessionContext

        Raises:
            PipelineError: The session-scoped error that moved the session
                to FAILED (ModelLoadError, DataLoadError, LoadTimeoutError)
            RuntimeError: If the session is not IDLE or FAILED
        """
        token, generation = self._begin_loading()
        return self._run_load(token, generation, timeout_s)

    def start(self, timeout_s: Optional[float] = None) -> threading.Thread:
        """Load in a background thread; failures are kept in ``error``."""
        token, generation = self._begin_loading()
        thread = threading.Thread(
            target=self._run_load_quietly,
            args=(token, generation, timeout_s),
            name="snakeid-session-load",
            daemon=True,
        )
        thread.start()
        return thread

    def retry(self, timeout_s: Optional[float] = None,
              background: bool = False):
        """Re-enter LOADING from FAILED.

        Returns:
            SessionContext, or the loader thread when ``background`` is set
        """
        if self._state != SessionState.FAILED:
            raise RuntimeError(f"Cannot retry session in state {self._state.value}")
        logger.info("Retrying session load after: %s", self._error)
        if background:
            return self.start(timeout_s)
        return self.load(timeout_s)

    def _begin_loading(self) -> Tuple[threading.Event, int]:
        with self._lock:
            if self._state not in (SessionState.IDLE, SessionState.FAILED):
                raise RuntimeError(f"Cannot load session in state {self._state.value}")
            self._state = SessionState.LOADING
            self._error = None
            self._context = None
            self._generation += 1
            self._cancel_token = threading.Event()
            return self._cancel_token, self._generation

    def _run_load_quietly(self, token: threading.Event, generation: int,
                          timeout_s: Optional[float]) -> None:
        try:
            self._run_load(token, generation, timeout_s)
        except PipelineError:
            pass  # already recorded in self._error
        except RuntimeError as e:
            logger.warning("Background load ended: %s", e)

    def _run_load(self, token: threading.Event, generation: int,
                  timeout_s: Optional[float]) -> SessionContext:
        timeout_s = self.config.load_timeout_s if timeout_s is None else timeout_s
        started = time.monotonic()
        logger.info("Loading session assets from %s (timeout %.1fs)",
                    self.asset_source.assets_dir, timeout_s)

        # A fresh pool per attempt so a loader stuck past the deadline
        # cannot starve the next retry
        executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="snakeid-load")
        try:
            model_future = executor.submit(self._load_model_and_labels, token)
            table_future = executor.submit(self._load_reference_table, token)
            done, pending = wait([model_future, table_future],
                                 timeout=timeout_s, return_when=FIRST_EXCEPTION)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        failed = [f for f in done if f.exception() is not None]
        if failed:
            token.set()
            for future in pending:
                future.cancel()
            error = failed[0].exception()
            if not isinstance(error, PipelineError):
                error = ModelLoadError(f"Unexpected loading failure: {error}")
            self._fail(error, generation)
            raise error

        if pending:
            token.set()
            for future in pending:
                future.cancel()
            error = LoadTimeoutError(timeout_s)
            self._fail(error, generation)
            raise error

        model, labels = model_future.result()
        reference_table, reference_error = table_future.result()
        context = SessionContext(
            model=model,
            labels=labels,
            reference_table=reference_table,
            reference_error=reference_error,
        )

        with self._lock:
            if self._state != SessionState.LOADING or generation != self._generation:
                raise RuntimeError(
                    f"Session became {self._state.value} while loading; result discarded")
            self._context = context
            self._state = SessionState.READY

        logger.info("Session ready in %.2fs: %d labels, %d reference keys",
                    time.monotonic() - started, len(labels), len(reference_table))
        return context

    def _fail(self, error: PipelineError, generation: int) -> None:
        with self._lock:
            if self._state != SessionState.LOADING or generation != self._generation:
                return
            self._state = SessionState.FAILED
            self._error = error
        logger.error("Session load failed (%s): %s", error.stage, error.message)

    @staticmethod
    def _check_cancelled(token: threading.Event) -> None:
        if token.is_set():
            raise ModelLoadError("Loading cancelled")

    def _load_model_and_labels(self, token: threading.Event) -> Tuple[ModelRuntime, List[str]]:
        labels = self.asset_source.load_labels()
        self._check_cancelled(token)

        model_path = self.asset_source.resolve_model()
        try:
            model = self._model_loader(model_path, self.device_manager)
        except PipelineError:
            raise
        except Exception as e:
            raise ModelLoadError(f"Failed to load model {model_path.name}: {e}")
        self._check_cancelled(token)

        output_dim = model.output_dim
        if output_dim is None:
            output_dim = self._measure_output_dim(model)
            self._check_cancelled(token)
        if output_dim is not None and output_dim != len(labels):
            raise ModelLoadError(
                f"Model has {output_dim} outputs but {len(labels)} labels were loaded")
        return model, labels

    def _measure_output_dim(self, model: ModelRuntime) -> Optional[int]:
        """Run one blank input through a model that does not declare its size.

        Returns:
            Score vector length, or None when the model emits a bare label
        """
        size = self.config.input_size
        try:
            output = model.predict(np.zeros((3, size, size), dtype=np.float32))
        except Exception as e:
            raise ModelLoadError(f"Model failed a test inference: {e}")
        if not isinstance(output, ScoresOutput):
            return None
        model.output_dim = int(output.scores.size)
        logger.info("Model output size measured: %d", model.output_dim)
        return model.output_dim

    def _load_reference_table(
        self, token: threading.Event
    ) -> Tuple[ReferenceTable, Optional[DataLoadError]]:
        path = self.asset_source.reference_table_path
        try:
            table = load_reference_table(path)
        except DataLoadError as e:
            if self.config.require_reference_table:
                raise
            logger.warning("Reference table unavailable, predictions will "
                           "have no reference data: %s", e.message)
            return ReferenceTable(), e
        except Exception as e:
            error = DataLoadError(path, str(e))
            if self.config.require_reference_table:
                raise error
            logger.warning("Reference table unavailable: %s", error.message)
            return ReferenceTable(), error
        self._check_cancelled(token)
        return table, None

    # ==================== Requests ====================

    def try_begin_request(self) -> Optional[SessionContext]:
        """Mark the session BUSY and return its context, or None if not READY."""
        with self._lock:
            if self._state != SessionState.READY:
                return None
            self._state = SessionState.BUSY
            return self._context

    def end_request(self) -> bool:
        """Return the session to READY.

        Returns:
            False if the session was closed while the request was in flight
        """
        with self._lock:
            if self._state == SessionState.BUSY:
                self._state = SessionState.READY
                return True
            return self._state != SessionState.CLOSED

    # ==================== Teardown / status ====================

    def close(self) -> None:
        """Tear the session down. In-flight results will be discarded."""
        with self._lock:
            if self._state == SessionState.CLOSED:
                return
            self._state = SessionState.CLOSED
            self._cancel_token.set()
            self._context = None
        self.device_manager.clear_cache()
        logger.info("Session closed")

    def get_status(self) -> Dict[str, Any]:
        """Get session status as dictionary."""
        context = self._context
        result: Dict[str, Any] = {
            "state": self._state.value,
            "assets_dir": str(self.asset_source.assets_dir),
        }
        if self._error is not None:
            result["error"] = self._error.to_dict()
        if context is not None:
            result["label_count"] = len(context.labels)
            result["reference_count"] = len(context.reference_table.records)
            result["model_output_dim"] = context.model.output_dim
            if context.reference_error is not None:
                result["reference_error"] = context.reference_error.to_dict()
        return result
