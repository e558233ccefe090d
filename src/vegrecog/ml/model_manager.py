"""ONNX model lifecycle: fetch from the HuggingFace Hub, load, cache, evict.

Sessions are shared by every request. Each cached session remembers when it
was last handed out, and :class:`IdleSessionReaper` periodically drops the
ones idle for longer than ``model_ttl`` so an unused model stops holding
memory. The next request simply loads it again.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import GraphOptimizationLevel, InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from vegrecog.core.categories import Category

if TYPE_CHECKING:
    from vegrecog.config import Settings

logger = logging.getLogger(__name__)

# Upper bound between two idle sweeps; short TTLs are swept at their own pace.
MAX_SWEEP_INTERVAL = 60.0

Provider = str | tuple[str, dict[str, object]]


class ModelManager(Protocol):
    """What the classifier and the app lifespan need from a model manager."""

    def ensure_downloaded(self, model_name: str) -> Path: ...

    def get_session(self, model_name: str) -> InferenceSession: ...

    def get_loaded_models(self) -> list[str]: ...

    def unload_idle_models(self) -> list[str]: ...

    def shutdown(self) -> None: ...


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelSpec:
    """Where to fetch a classifier and how to read its output."""

    name: str
    repo_id: str
    filename: str
    subfolder: str | None
    labels: tuple[Category, ...]
    input_size: tuple[int, int]
    license: str


_TEACHABLE_MACHINE_LABELS = (Category.TOMATO, Category.CARROT, Category.POTATO)

MODEL_REGISTRY: dict[str, ModelSpec] = {
    "vegetables_tm_v1": ModelSpec(
        name="vegetables_tm_v1",
        repo_id="vegrecog/vegetable-classifier",
        filename="vegetables_tm_v1.onnx",
        subfolder=None,
        labels=_TEACHABLE_MACHINE_LABELS,
        input_size=(224, 224),
        license="MIT",
    ),
    "vegetables_tm_v1_int8": ModelSpec(
        name="vegetables_tm_v1_int8",
        repo_id="vegrecog/vegetable-classifier",
        filename="vegetables_tm_v1_int8.onnx",
        subfolder="quantized",
        labels=_TEACHABLE_MACHINE_LABELS,
        input_size=(224, 224),
        license="MIT",
    ),
}


def get_spec(model_name: str) -> ModelSpec:
    """Look up a registered model, raising KeyError for unknown names."""
    try:
        return MODEL_REGISTRY[model_name]
    except KeyError:
        raise KeyError(f"Unknown model: {model_name}") from None


# ---------------------------------------------------------------------------
# ONNX Runtime configuration
# ---------------------------------------------------------------------------


def build_providers(settings: Settings) -> list[Provider]:
    """Execution providers in preference order for the configured device."""
    chain: list[Provider] = []
    if settings.device == "cuda":
        chain.append(
            (
                "CUDAExecutionProvider",
                {
                    "device_id": 0,
                    "gpu_mem_limit": settings.gpu_mem_limit,
                    "arena_extend_strategy": "kSameAsRequested",
                },
            )
        )
    elif settings.device == "openvino":
        chain.append(("OpenVINOExecutionProvider", {"device_type": "CPU"}))
    chain.append("CPUExecutionProvider")
    return chain


def build_session_options(settings: Settings) -> SessionOptions:
    opts = SessionOptions()
    opts.intra_op_num_threads = settings.intra_op_threads
    opts.inter_op_num_threads = settings.inter_op_threads
    opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
    opts.enable_mem_pattern = True
    opts.enable_mem_reuse = True
    if settings.device == "openvino":
        # OpenVINO optimizes the graph itself.
        opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
    return opts


def sweep_interval(ttl: int) -> float:
    """Seconds between idle sweeps for a session TTL."""
    return min(float(ttl), MAX_SWEEP_INTERVAL)


# ---------------------------------------------------------------------------
# Session cache
# ---------------------------------------------------------------------------


@dataclass
class _CachedSession:
    session: InferenceSession
    last_used: float = field(default_factory=time.monotonic)

    def touch(self) -> InferenceSession:
        self.last_used = time.monotonic()
        return self.session


class OnnxModelManager:
    """Thread-safe cache of ONNX sessions keyed by registered model name."""

    def __init__(self, settings: Settings) -> None:
        self._models_dir = Path(settings.models_dir)
        self._models_dir.mkdir(parents=True, exist_ok=True)
        self._ttl = settings.model_ttl

        self._lock = threading.Lock()
        self._sessions: dict[str, _CachedSession] = {}
        self._model_paths: dict[str, Path] = {}

        self._providers = build_providers(settings)
        self._session_options = build_session_options(settings)

    @property
    def ttl(self) -> int:
        """Idle seconds before a session is evicted; 0 keeps sessions forever."""
        return self._ttl

    def ensure_downloaded(self, model_name: str) -> Path:
        """Return the local model file, fetching it from the Hub on first use."""
        spec = get_spec(model_name)
        known = self._model_paths.get(model_name)
        if known is not None and known.exists():
            return known

        path = Path(
            hf_hub_download(
                repo_id=spec.repo_id,
                filename=spec.filename,
                subfolder=spec.subfolder,
                local_dir=str(self._models_dir),
            )
        )
        self._model_paths[model_name] = path
        logger.info("Fetched %s from %s into %s", model_name, spec.repo_id, path)
        return path

    def get_session(self, model_name: str) -> InferenceSession:
        with self._lock:
            cached = self._sessions.get(model_name)
            if cached is not None:
                return cached.touch()

        # Loading can take seconds, so it happens outside the lock.
        session = InferenceSession(
            str(self.ensure_downloaded(model_name)),
            sess_options=self._session_options,
            providers=self._providers,
        )

        with self._lock:
            # A concurrent caller may have loaded it first; its session wins.
            cached = self._sessions.setdefault(model_name, _CachedSession(session))
            if cached.session is session:
                logger.info("Loaded session for %s", model_name)
            return cached.touch()

    def get_loaded_models(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def unload_idle_models(self) -> list[str]:
        """Evict sessions idle for longer than the TTL and return their names."""
        if not self._ttl:
            return []
        cutoff = time.monotonic() - self._ttl
        with self._lock:
            expired = [name for name, cached in self._sessions.items() if cached.last_used < cutoff]
            for name in expired:
                del self._sessions[name]
        for name in expired:
            logger.info("Evicted %s after %ds idle", name, self._ttl)
        return expired

    def shutdown(self) -> None:
        with self._lock:
            released = len(self._sessions)
            self._sessions.clear()
        logger.info("Released %d model sessions", released)


class IdleSessionReaper:
    """Background task that evicts idle sessions every ``interval`` seconds."""

    def __init__(self, manager: ModelManager, interval: float) -> None:
        self._manager = manager
        self._interval = interval
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start sweeping on the running event loop. No-op when already started."""
        if self.running:
            return
        self._task = asyncio.create_task(self._sweep_loop(), name="idle-session-reaper")
        logger.info("Sweeping idle model sessions every %.1fs", self._interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                self._manager.unload_idle_models()
            except Exception:
                logger.exception("Idle session sweep failed")
