"""
Langfuse telemetry for LLM calls.

Every generation made by the LLM service is traced when Langfuse credentials
are configured. Without credentials the tracing helpers are no-ops.

Usage:
    from apphost.telemetry import trace_llm_call

    with trace_llm_call("parameter-extraction", model="llama-3.3-70b-versatile") as trace:
        text = await call_model(prompt)
        trace.update(output=text)
"""

import logging
import os
import time
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Optional

from langfuse import Langfuse

logger = logging.getLogger(__name__)

_langfuse_client: Optional[Langfuse] = None
_telemetry_enabled: bool = False
_init_attempted: bool = False


@dataclass
class GenerationTrace:
    """Wrapper for a Langfuse generation observation."""
    name: str
    model: str
    start_time: float
    _generation: Any = None

    def update(
        self,
        output: Optional[str] = None,
        usage: Optional[Dict[str, int]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ):
        """Update the generation with output and metrics."""
        if not _telemetry_enabled or self._generation is None:
            return

        update_kwargs: Dict[str, Any] = {}
        if output is not None:
            update_kwargs["output"] = output
        if usage:
            update_kwargs["usage_details"] = {
                "input": usage.get("prompt_tokens", usage.get("input_tokens", 0)),
                "output": usage.get("completion_tokens", usage.get("output_tokens", 0)),
                "total": usage.get("total_tokens", 0),
            }
        if metadata:
            update_kwargs["metadata"] = metadata
        if error:
            update_kwargs["level"] = "ERROR"
            update_kwargs["status_message"] = error

        if not update_kwargs:
            return
        try:
            self._generation.update(**update_kwargs)
        except Exception as e:
            logger.debug(f"Telemetry update failed: {e}")

    @property
    def elapsed_ms(self) -> float:
        return (time.time() - self.start_time) * 1000


def init_langfuse() -> Optional[Langfuse]:
    """
    Initialize and return the Langfuse client.

    Reads LANGFUSE_SECRET_KEY, LANGFUSE_PUBLIC_KEY and the optional
    LANGFUSE_BASE_URL. Returns None when credentials are missing.
    """
    global _langfuse_client, _telemetry_enabled, _init_attempted

    if _langfuse_client is not None or _init_attempted:
        return _langfuse_client
    _init_attempted = True

    secret_key = os.getenv("LANGFUSE_SECRET_KEY", "").strip()
    public_key = os.getenv("LANGFUSE_PUBLIC_KEY", "").strip()
    if not secret_key or not public_key:
        logger.info("ℹ️ Langfuse credentials not configured - telemetry disabled")
        return None

    base_url = os.getenv("LANGFUSE_BASE_URL", "").strip() or None
    try:
        _langfuse_client = Langfuse(
            secret_key=secret_key,
            public_key=public_key,
            host=base_url,
            flush_at=10,
            flush_interval=5,
        )
    except Exception as e:
        logger.warning(f"⚠️ Failed to initialize Langfuse: {e}")
        return None

    _telemetry_enabled = True
    logger.info(f"✅ Langfuse telemetry initialized (host: {base_url or 'cloud'})")
    return _langfuse_client


def get_langfuse() -> Optional[Langfuse]:
    """Get the global Langfuse client, initializing if needed."""
    if _langfuse_client is None:
        init_langfuse()
    return _langfuse_client


def is_telemetry_enabled() -> bool:
    return _telemetry_enabled and _langfuse_client is not None


@contextmanager
def trace_llm_call(
    name: str,
    model: str = "unknown",
    input_data: Optional[Any] = None,
    model_parameters: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None,
):
    """
    Context manager for tracing one LLM call.

    Yields a GenerationTrace whose update() forwards to Langfuse. Exceptions
    raised by the traced block are recorded on the generation and re-raised.
    """
    trace = GenerationTrace(name=name, model=model, start_time=time.time())
    langfuse = get_langfuse()

    with ExitStack() as stack:
        if langfuse is not None:
            try:
                trace._generation = stack.enter_context(
                    langfuse.start_as_current_observation(
                        as_type="generation",
                        name=name,
                        model=model,
                        input=input_data,
                        model_parameters=model_parameters or {},
                        metadata=metadata,
                    )
                )
            except Exception as e:
                logger.debug(f"Telemetry trace creation failed: {e}")
        try:
            yield trace
        except Exception as e:
            trace.update(error=str(e))
            raise


def flush_telemetry():
    """Flush pending telemetry events."""
    if _langfuse_client is None:
        return
    try:
        _langfuse_client.flush()
    except Exception as e:
        logger.debug(f"Telemetry flush failed: {e}")
