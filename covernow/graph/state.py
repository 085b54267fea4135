"""
state.py — ChatState TypedDict for the CoverNow LangGraph agent loop.

  agent → (tool calls and steps left?) → tools → agent → ... → END

messages uses the add_messages reducer, so each node returns only the messages
it produced. tool_log accumulates one {toolCallId, toolName, args, result} entry
per executed call; the chat service persists it alongside the assistant text.
"""
import operator
from typing import Annotated

from langchain_core.messages import AnyMessage
from langgraph.graph.message import add_messages
from typing_extensions import TypedDict


class ChatState(TypedDict, total=False):
    messages: Annotated[list[AnyMessage], add_messages]
    tool_steps: int                                   # tools-node executions this turn
    tool_log: Annotated[list[dict], operator.add]     # paired calls + results
