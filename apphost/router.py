"""
Message Router - classifies chat turns inside an app context.

Every free-text message sent while an app is the current context is
classified into one of three actions:
1. invoke_tool - run one of the app's tools
2. modify_parameters - re-run the last invocation with changed arguments
3. respond - answer conversationally

Classification never raises: a delegate failure or an unparseable answer
degrades to ``respond``.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .exceptions import RoutingDecisionParseFailure, describe_failure
from .invocation import OutcomeKind, ToolInvocationController
from .llm_service import GenerativeTextDelegate, ModelType
from .models import App, Tool
from .session import InvokedToolState, Session, SessionContextManager
from .tool_logger import ToolLogger, get_tool_logger

logger = logging.getLogger(__name__)

INVOKE_TOOL = "invoke_tool"
MODIFY_PARAMETERS = "modify_parameters"
RESPOND = "respond"

CONTEXT_LOST = "Error: App context lost"
DEFAULT_LLM_TIMEOUT = 30.0


class RoutingDecision(BaseModel):
    """The classifier's answer."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    action: str = RESPOND
    tool_name: Optional[str] = Field(default=None, alias="toolName")
    parameters: Optional[Dict[str, Any]] = None
    response: Optional[str] = None
    parse_failed: bool = False


def _extract_json(text: str) -> str:
    """Strip code fences and surrounding prose from a JSON answer."""
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
        text = text.strip()
    if not text.startswith("{"):
        start, end = text.find("{"), text.rfind("}")
        if start != -1 and end > start:
            text = text[start:end + 1]
    return text


def parse_routing_decision(raw: str) -> RoutingDecision:
    """
    Parse a routing answer.

    Raises:
        RoutingDecisionParseFailure: not a JSON object with a string ``action``
    """
    try:
        payload = json.loads(_extract_json(raw))
    except json.JSONDecodeError as e:
        raise RoutingDecisionParseFailure(f"Routing answer is not JSON: {e}", {"raw": raw[:200]}) from e

    if not isinstance(payload, dict) or not isinstance(payload.get("action"), str):
        raise RoutingDecisionParseFailure("Routing answer has no action", {"raw": raw[:200]})

    try:
        return RoutingDecision.model_validate(payload)
    except ValidationError as e:
        raise RoutingDecisionParseFailure(f"Routing answer failed validation: {e.error_count()} error(s)",
                                          {"raw": raw[:200]}) from e


def _tool_line(tool: Tool) -> str:
    params = list(tool.properties().keys())
    param_str = f" (params: {', '.join(params)})" if params else ""
    title = f" [{tool.title}]" if tool.title else ""
    return f"- {tool.name}{title}: {tool.description or 'No description'}{param_str}"


def build_routing_prompt(app: App, last_invocation: Optional[InvokedToolState] = None) -> str:
    tools_text = "\n".join(_tool_line(t) for t in app.tools) or "No tools available."
    last_text = ""
    if last_invocation is not None and last_invocation.app_id == app.id:
        last_text = (
            f"\n\nLast tool run: {last_invocation.tool.name} with "
            f"{json.dumps(last_invocation.parameters, default=str)}"
        )

    return f"""You are helping route user messages in an MCP app context ({app.name}).

Available tools:
{tools_text}{last_text}

Decide what the user wants:
1. "{INVOKE_TOOL}" - the user wants to run one of the tools above
2. "{MODIFY_PARAMETERS}" - the user wants to change arguments of the last tool run and run it again
3. "{RESPOND}" - the user is asking a question or chatting

Respond with JSON only:
{{"action": "{INVOKE_TOOL}|{MODIFY_PARAMETERS}|{RESPOND}", "toolName": "<tool name or null>", "parameters": {{}}, "response": "<reply text or null>"}}"""


def build_context_prompt(app: App, last_invocation: Optional[InvokedToolState] = None) -> str:
    tools_text = "\n".join(f"- {t.display_name}: {t.description or ''}" for t in app.tools)
    prompt = f"""You are an assistant inside the "{app.name}" app.
{app.description}

The app offers these tools:
{tools_text or '- none'}"""
    if last_invocation is not None and last_invocation.app_id == app.id:
        prompt += f"\n\nThe last tool used was {last_invocation.tool.display_name}; it returned:\n{last_invocation.result}"
    return prompt + "\n\nAnswer the user's message helpfully and briefly."


class MessageRouter:
    """
    Routes chat turns for the current app context.

    Usage:
        reply = await router.handle_message("what's the weather in Paris?", history)
    """

    def __init__(
        self,
        session: Session,
        delegate: GenerativeTextDelegate,
        controller: ToolInvocationController,
        context: SessionContextManager,
        model_type: ModelType = ModelType.DEFAULT,
        timeout: float = DEFAULT_LLM_TIMEOUT,
        tool_logger: Optional[ToolLogger] = None,
    ):
        self.session = session
        self.delegate = delegate
        self.controller = controller
        self.context = context
        self.model_type = model_type
        self.timeout = timeout
        self.tool_logger = tool_logger or get_tool_logger()

    async def _generate(self, prompt: str, history: Optional[Sequence[Tuple[str, str]]]) -> str:
        if history:
            call = self.delegate.generate_response_with_history(prompt, self.model_type, list(history))
        else:
            call = self.delegate.generate_response(prompt, self.model_type)
        return await asyncio.wait_for(call, timeout=self.timeout)

    async def classify(
        self,
        user_message: str,
        app: App,
        history: Optional[Sequence[Tuple[str, str]]] = None,
    ) -> RoutingDecision:
        prompt = f"{build_routing_prompt(app, self.session.last_invocation)}\n\nUser message: {user_message}"

        try:
            raw = await self._generate(prompt, history)
        except asyncio.TimeoutError:
            logger.warning("⏱️ Routing call timed out; answering conversationally")
            return RoutingDecision(action=RESPOND)
        except Exception as e:
            logger.warning(f"⚠️ Routing call failed: {e}")
            return RoutingDecision(action=RESPOND)

        try:
            decision = parse_routing_decision(raw)
        except RoutingDecisionParseFailure as e:
            logger.info(f"ℹ️ {e.message}; treating as a reply")
            decision = RoutingDecision(action=RESPOND, response=raw, parse_failed=True)

        self.tool_logger.log_routing_decision(
            user_message,
            decision.action,
            tool_name=decision.tool_name,
            reason="unparseable answer" if decision.parse_failed else "",
        )
        return decision

    def resolve_tool(self, app: App, tool_name: Optional[str]) -> Optional[Tool]:
        """Find by exact name, then by case-insensitive title."""
        if not tool_name:
            return None
        return app.find_tool(tool_name) or app.find_tool_by_title(tool_name)

    async def handle_message(
        self,
        user_message: str,
        history: Optional[Sequence[Tuple[str, str]]] = None,
    ) -> str:
        app = self.context.get_context_app()
        if app is None:
            return CONTEXT_LOST

        decision = await self.classify(user_message, app, history)

        if decision.action == INVOKE_TOOL:
            return await self._invoke(app, decision)

        if decision.action == MODIFY_PARAMETERS:
            reply = await self.modify_parameters(decision.parameters)
            if reply is not None:
                return reply
            logger.info("ℹ️ Nothing to modify; answering conversationally")

        if decision.response:
            return decision.response
        return await self.contextual_reply(user_message, app, history)

    async def _invoke(self, app: App, decision: RoutingDecision) -> str:
        tool = self.resolve_tool(app, decision.tool_name)
        if tool is None:
            available = ", ".join(t.display_name for t in app.tools)
            return f"I couldn't determine which tool to invoke. Available tools: {available}"

        outcome = await self.controller.invoke(app.id, tool.name)
        if outcome.kind == OutcomeKind.COLLECTION_STARTED:
            needed = ", ".join(tool.required_parameters())
            return f"To run {tool.display_name}, I need: {needed}"
        if outcome.kind == OutcomeKind.FAILED:
            return outcome.message
        return ""

    async def modify_parameters(self, parameters: Optional[Dict[str, Any]]) -> Optional[str]:
        """
        Merge ``parameters`` over the last invocation's arguments and re-run.

        Returns None when there is nothing to modify (no parameters, or no
        last invocation for the current context app).
        """
        app = self.context.get_context_app()
        last = self.session.last_invocation
        if not parameters or app is None or last is None or last.app_id != app.id:
            return None

        tool = app.find_tool(last.tool.name) or last.tool
        merged = {**last.parameters, **parameters}
        logger.info(f"✏️ Re-running {tool.name} with changed {sorted(parameters)}")

        outcome = await self.controller.execute(app.id, tool, merged)
        return "" if outcome.ok else outcome.message

    async def contextual_reply(
        self,
        user_message: str,
        app: App,
        history: Optional[Sequence[Tuple[str, str]]] = None,
    ) -> str:
        prompt = f"{build_context_prompt(app, self.session.last_invocation)}\n\nUser: {user_message}"
        try:
            return await self._generate(prompt, history)
        except asyncio.TimeoutError:
            return "Sorry, I encountered an error: the response timed out"
        except Exception as e:
            logger.error(f"❌ Contextual reply failed: {e}")
            return describe_failure("Sorry, I encountered an error", e)
