"""
Parameter Collection State Machine.

Runs a multi-turn dialogue that fills a tool's missing required parameters
from free text, then hands the completed arguments to the invocation
controller.

States: INACTIVE (no state object) -> COLLECTING -> EXECUTED | ABORTED.

Each turn asks the generative delegate to answer with a
``TOOL_PARAMS: {...}`` line. Each value in the JSON payload is validated
against a pydantic model generated from the tool's input schema, and values
that do not fit their declared type are kept as text. A reply whose payload
is not a JSON object degrades to a normal conversational turn.
"""

import asyncio
import json
import logging
import re
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError, create_model

from . import events
from .exceptions import ParameterExtractionParseFailure, describe_failure
from .llm_service import GenerativeTextDelegate, ModelType
from .models import Tool
from .session import CollectionPhase, ParameterCollectionState, Session, SessionContextManager
from .tool_logger import ToolLogger, get_tool_logger

if TYPE_CHECKING:
    from .invocation import ToolInvocationController

logger = logging.getLogger(__name__)

MARKER = "TOOL_PARAMS:"
PLACEHOLDER = "<extracted_value>"
NO_ACTIVE_COLLECTION = "Error: No active parameter collection"
NO_REMAINING_PARAMETERS = "Error: No remaining parameters"
DEFAULT_LLM_TIMEOUT = 30.0

_DECODER = json.JSONDecoder()
_MARKER_LINE = re.compile(r"TOOL_PARAMS:.*")

_SCHEMA_TYPES: Dict[str, Any] = {
    "string": str,
    "integer": int,
    "number": float,
    "boolean": bool,
    "array": list,
    "object": dict,
}


# ============================================================================
# PROMPT AND PARSING
# ============================================================================

def _declared_type(prop: Any) -> Optional[str]:
    if not isinstance(prop, dict):
        return None
    kind = prop.get("type")
    if isinstance(kind, list):
        kind = next((k for k in kind if k != "null"), None)
    return kind if kind in _SCHEMA_TYPES else None


def extraction_model(tool: Tool) -> Type[BaseModel]:
    """Pydantic model mirroring the tool's declared properties (all optional)."""
    fields: Dict[str, Any] = {}
    for index, (name, prop) in enumerate(tool.properties().items()):
        py_type = _SCHEMA_TYPES.get(_declared_type(prop), Any)
        fields[f"p{index}"] = (Optional[py_type], Field(default=None, alias=name))
    return create_model(
        "ExtractedParameters",
        __config__=ConfigDict(extra="allow", coerce_numbers_to_str=True),
        **fields,
    )


def as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    return json.dumps(value)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and (not value.strip() or value.strip() == PLACEHOLDER))


def parse_tool_params(tool: Tool, response: str) -> Dict[str, Any]:
    """
    Pull the ``TOOL_PARAMS`` object out of ``response`` and merge-ready values.

    Each value is validated against its declared property type. A value that
    does not fit is kept as text instead of rejecting the whole payload.

    Raises:
        ParameterExtractionParseFailure: no JSON object after the marker, or
            invalid JSON
    """
    marker_at = response.find(MARKER)
    start = response.find("{", marker_at + len(MARKER) if marker_at != -1 else 0)
    if start == -1:
        raise ParameterExtractionParseFailure("No JSON object after TOOL_PARAMS marker", {"response": response[:200]})

    try:
        payload, _ = _DECODER.raw_decode(response, start)
    except json.JSONDecodeError as e:
        raise ParameterExtractionParseFailure(f"Invalid TOOL_PARAMS JSON: {e}", {"response": response[:200]}) from e

    model = extraction_model(tool)
    mismatched = set()
    try:
        validated = model.model_validate(payload)
    except ValidationError as e:
        mismatched = {err["loc"][0] for err in e.errors() if err["loc"]}
        logger.info(f"ℹ️ Keeping {sorted(map(str, mismatched))} as text: value does not fit the declared type")
        try:
            validated = model.model_validate({k: v for k, v in payload.items() if k not in mismatched})
        except ValidationError as retry_error:
            raise ParameterExtractionParseFailure(
                f"TOOL_PARAMS failed schema validation: {retry_error.error_count()} error(s)",
                {"errors": retry_error.errors(include_url=False)},
            ) from retry_error

    properties = tool.properties()
    values: Dict[str, Any] = {}
    for attr, info in model.model_fields.items():
        name = info.alias
        if name not in payload or name in mismatched:
            continue
        value = getattr(validated, attr)
        if _declared_type(properties.get(name)) is None and value is not None:
            value = as_text(value)
        values[name] = value
    for name, value in payload.items():
        if name not in values:
            values[name] = value if value is None else as_text(value)

    return {name: value for name, value in values.items() if not _is_blank(value)}


def strip_marker(response: str) -> str:
    """Remove the marker and its JSON object, leaving the conversational part."""
    marker_at = response.find(MARKER)
    if marker_at == -1:
        return response.strip()

    start = marker_at + len(MARKER)
    while start < len(response) and response[start].isspace():
        start += 1
    if response.startswith("{", start):
        try:
            _, end = _DECODER.raw_decode(response, start)
        except json.JSONDecodeError:
            pass
        else:
            response = response[:marker_at] + response[end:]
    return _MARKER_LINE.sub("", response).strip()


def _describe_param(name: str, prop: Any) -> str:
    if not isinstance(prop, dict):
        return f"- {name}"
    kind = _declared_type(prop)
    desc = prop.get("description")
    line = f"- {name}" + (f" ({kind})" if kind else "")
    return f"{line}: {desc}" if desc else line


def build_extraction_prompt(state: ParameterCollectionState, user_message: str) -> str:
    properties = state.tool.properties()
    remaining = state.remaining()
    remaining_lines = "\n".join(_describe_param(name, properties.get(name)) for name in remaining)
    collected = ", ".join(f"{k}={as_text(v)}" for k, v in state.collected_params.items()) or "none"
    example = ", ".join(f'"{name}": "{PLACEHOLDER}"' for name in remaining)

    return f"""The user is providing parameter values for the "{state.tool.display_name}" tool.

Required parameters (not yet collected):
{remaining_lines}

Already collected: {collected}

User's response: "{user_message}"

Extract parameter values from the user's response. If you can extract any of the required parameters, respond with a single line:
{MARKER} {{{example}}}

Only include parameters you could actually extract, and extract every one you can in this pass.
If the user's response doesn't contain the needed information, ask for the missing parameters in a natural way."""


# ============================================================================
# STATE MACHINE
# ============================================================================

class ParameterCollectionStateMachine:
    """
    Conducts the extraction dialogue for the session's single active collection.

    Usage:
        machine.start("weather-app", tool, ["city"])
        reply = await machine.continue_turn("it's Paris")   # "" once the tool ran
    """

    def __init__(
        self,
        session: Session,
        delegate: GenerativeTextDelegate,
        controller: "ToolInvocationController",
        events_channel: events.EventChannel,
        context: SessionContextManager,
        model_type: ModelType = ModelType.DEFAULT,
        timeout: float = DEFAULT_LLM_TIMEOUT,
        tool_logger: Optional[ToolLogger] = None,
    ):
        self.session = session
        self.delegate = delegate
        self.controller = controller
        self.events = events_channel
        self.context = context
        self.model_type = model_type
        self.timeout = timeout
        self.tool_logger = tool_logger or get_tool_logger()

    def state(self) -> Optional[ParameterCollectionState]:
        return self.session.active_collection

    def is_collecting(self) -> bool:
        return self.session.active_collection is not None

    def start(
        self,
        app_id: str,
        tool: Tool,
        required: List[str],
        inferred: Optional[Dict[str, Any]] = None,
    ) -> ParameterCollectionState:
        """Begin collecting; replaces any collection already in progress."""
        if self.session.active_collection is not None:
            self.context.abort_collection(f"replaced by {tool.name}")

        state = ParameterCollectionState(
            app_id=app_id,
            tool=tool,
            required_params=list(required),
            collected_params=dict(inferred or {}),
        )
        self.session.active_collection = state
        self.tool_logger.log_collection_start(app_id, tool.name, state.required_params)
        self.events.publish(events.ParameterCollectionStarted(
            app_id=app_id, tool=tool, required=tuple(state.required_params)
        ))
        return state

    def abort(self, reason: str = "aborted") -> bool:
        if self.session.active_collection is None:
            return False
        self.context.abort_collection(reason)
        return True

    async def continue_turn(self, user_message: str) -> str:
        """Process one user turn; returns the text to show ("" after execution)."""
        async with self.session.collection_lock:
            return await self._continue_turn(user_message)

    async def _continue_turn(self, user_message: str) -> str:
        state = self.session.active_collection
        if state is None:
            return NO_ACTIVE_COLLECTION

        remaining = state.remaining()
        if not remaining:
            return NO_REMAINING_PARAMETERS

        prompt = build_extraction_prompt(state, user_message)
        try:
            response = await asyncio.wait_for(
                self.delegate.generate_response_with_history(prompt, self.model_type, list(state.turn_history)),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"⏱️ Parameter extraction for {state.tool.name} timed out")
            return "Sorry, that took too long. Could you say that again?"
        except Exception as e:
            logger.error(f"❌ Parameter extraction for {state.tool.name} failed: {e}")
            return describe_failure("Sorry, I encountered an error", e)

        if self.session.active_collection is not state:
            logger.info(f"🔓 Collection for {state.tool.name} ended while the model was answering")
            return NO_ACTIVE_COLLECTION

        state.turn_history.append(("user", user_message))
        state.turn_history.append(("assistant", response))

        if MARKER in response:
            try:
                extracted = parse_tool_params(state.tool, response)
            except ParameterExtractionParseFailure as e:
                logger.warning(f"⚠️ {e.message}; showing reply as-is")
                return response
            state.collected_params.update(extracted)
            logger.info(f"🧩 Extracted {sorted(extracted)} for {state.tool.name}")

        if state.is_complete():
            return await self._complete(state)

        self.tool_logger.log_collection_turn(
            state.app_id, state.tool.name, list(state.collected_params), state.remaining()
        )
        follow_up = strip_marker(response)
        if not follow_up:
            follow_up = f"Thanks! I still need: {', '.join(state.remaining())}"
        return follow_up

    async def _complete(self, state: ParameterCollectionState) -> str:
        state.phase = CollectionPhase.EXECUTED
        self.session.active_collection = None
        self.tool_logger.log_collection_end(state.app_id, state.tool.name, reason="all parameters collected")

        outcome = await self.controller.execute(state.app_id, state.tool, dict(state.collected_params))
        if not outcome.ok:
            return outcome.message

        current = self.context.get_context()
        if current is not None:
            self.events.publish(events.NeedsPillsRefresh(app_id=current))
        return ""
