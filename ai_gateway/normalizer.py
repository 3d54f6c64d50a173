"""
Request Normalizer - turns an action payload into a provider-neutral exchange.

Each action contributes a system prompt and a message list. A tool-result
continuation (tool_results + assistant_raw_content) is rebuilt as
[...history, assistant(raw blocks), user(tool_result blocks)]; if that
cannot be rebuilt the request is treated as a fresh general assistance turn.
"""

import json
from dataclasses import dataclass
from typing import List, Any, Union, Dict

from ai_gateway.models import (
    ExchangeBase,
    LessonGenerationRequest,
    HomeworkHelpRequest,
    GradingAssistanceRequest,
    GeneralAssistanceRequest,
    NormalizedMessage,
    ToolUseBlock,
    ToolResultBlock,
)
from ai_gateway.providers.content_blocks import parse_content_blocks
from config.logging_config import get_logger

logger = get_logger(__name__)


STYLE_GUIDE = (
    "Work like a sharp, professional colleague.\n"
    "- Answer in the language of the user's most recent message.\n"
    "- Keep answers short (1-3 sentences) unless the user asks for more detail.\n"
    "- No role-play, stage directions, emojis or filler phrases.\n"
    "- Lead with the actionable facts; skip preamble."
)

SYSTEM_PROMPTS: Dict[str, str] = {
    "lesson_generation": (
        "You are an experienced curriculum planner. Build structured, age-appropriate "
        "lessons with clear objectives, activities and assessment."
    ),
    "homework_help": (
        "You are a child-safe homework assistant. Explain step by step and build "
        "understanding; never hand over only the final answer."
    ),
    "general_assistance": (
        "You are Dash, a teaching assistant for early childhood education and preschool "
        "management. Give educators concise, practical advice with specific next steps."
    ),
    "grading_assistance": (
        "You are a grading assistant. Give constructive feedback and, where it fits, "
        "a concise score."
    ),
}

DEFAULT_GENERAL_PROMPT = "How can I help you with your educational needs?"
DEFAULT_RUBRIC = "accuracy, completeness, clarity"

FALLBACK_GENERAL = (
    "I'm here to help! I hit a temporary problem reaching my AI service. "
    "Please try again in a moment, or ask me something else."
)
FALLBACK_OTHER = "I couldn't process that request just now. Please try again or rephrase your question."


@dataclass
class Exchange:
    """Provider-neutral exchange: one system instruction plus the turns."""
    system_prompt: str
    messages: List[NormalizedMessage]


def system_prompt_for(feature: str) -> str:
    """Fixed per-feature system instruction."""
    base = SYSTEM_PROMPTS.get(feature, SYSTEM_PROMPTS["general_assistance"])
    return f"{base}\n\n{STYLE_GUIDE}"


def _user(text: str) -> NormalizedMessage:
    return NormalizedMessage(role="user", content=text)


def _lesson_messages(request: LessonGenerationRequest) -> List[NormalizedMessage]:
    topic = request.topic or "General Topic"
    subject = request.subject or "General Studies"
    grade = request.grade_level or 3
    duration = request.duration or 45
    objectives = ", ".join(request.objectives or []) or "derive reasonable objectives"
    return [_user(
        f"Generate a {duration} minute lesson for Grade {grade} on {topic} ({subject}). Include:\n"
        f"- Clear learning objectives ({objectives})\n"
        f"- Warm-up, core activities, and closure\n"
        f"- Assessment ideas\n"
        f"Use plain language and bullet points where helpful."
    )]


def _homework_messages(request: HomeworkHelpRequest) -> List[NormalizedMessage]:
    question = request.question or "Explain this concept."
    context = f"Context: {request.context}\n" if request.context else ""
    grade = f"This is for a Grade {request.grade_level} student. " if request.grade_level else ""
    return [_user(
        f"{context}{grade}Provide a step-by-step explanation for: {question}. "
        f"Use age-appropriate language and examples. Avoid giving only the final answer; "
        f"emphasize understanding and learning."
    )]


def _grading_messages(request: GradingAssistanceRequest) -> List[NormalizedMessage]:
    rubric = ", ".join(request.rubric) if request.rubric else DEFAULT_RUBRIC
    grade = request.grade_level or "N/A"
    return [_user(
        f"Student submission (Grade {grade}):\n{request.submission or ''}\n\n"
        f"Evaluate against rubric: {rubric}. "
        f"Provide brief constructive feedback and a score (0-100)."
    )]


def caller_history(request: ExchangeBase) -> List[NormalizedMessage]:
    """Caller-supplied turns minus system entries (and minus empty turns)."""
    history = []
    for message in request.messages or []:
        if message.role == "system":
            continue
        if isinstance(message.content, str):
            if message.content:
                history.append(NormalizedMessage(role=message.role, content=message.content))
            continue
        blocks = parse_content_blocks(message.content)
        if blocks:
            history.append(NormalizedMessage(role=message.role, content=blocks))
    return history


def _general_messages(request: ExchangeBase) -> List[NormalizedMessage]:
    history = caller_history(request)
    if history:
        return history
    text = getattr(request, "content", None) or getattr(request, "question", None)
    return [_user(text or DEFAULT_GENERAL_PROMPT)]


def build_messages(request: ExchangeBase) -> List[NormalizedMessage]:
    """Message list for a fresh (non-continuation) turn."""
    if isinstance(request, LessonGenerationRequest):
        return _lesson_messages(request)
    if isinstance(request, HomeworkHelpRequest):
        return _homework_messages(request)
    if isinstance(request, GradingAssistanceRequest):
        return _grading_messages(request)
    return _general_messages(request)


def _tool_result_content(content: Any) -> Union[str, List[Dict[str, Any]]]:
    if isinstance(content, str):
        return content
    if isinstance(content, list) and all(isinstance(item, dict) for item in content):
        return content
    return json.dumps(content)


def build_continuation(
    request: ExchangeBase,
    base_messages: List[NormalizedMessage]
) -> List[NormalizedMessage]:
    """
    Rebuild a tool-result continuation turn.

    Raises:
        ValueError: if the assistant content has no usable blocks or a tool
            result answers no tool_use block in it
    """
    prior = caller_history(request) if request.messages else base_messages

    assistant_blocks = parse_content_blocks(request.assistant_raw_content)
    if not assistant_blocks:
        raise ValueError("assistant_raw_content contains no usable content blocks")

    tool_use_ids = {block.id for block in assistant_blocks if isinstance(block, ToolUseBlock)}
    result_blocks = []
    for result in request.tool_results or []:
        if result.tool_use_id not in tool_use_ids:
            raise ValueError(f"tool_result '{result.tool_use_id}' answers no tool_use block")
        result_blocks.append(ToolResultBlock(
            tool_use_id=result.tool_use_id,
            content=_tool_result_content(result.content),
            is_error=result.is_error,
        ))

    return [
        *prior,
        NormalizedMessage(role="assistant", content=assistant_blocks),
        NormalizedMessage(role="user", content=result_blocks),
    ]


def build_exchange(request: ExchangeBase) -> Exchange:
    """
    Build the system prompt and messages for any exchange request.

    A caller-supplied `system` replaces the per-action instruction.
    """
    system_prompt = request.system or system_prompt_for(request.feature)
    messages = build_messages(request)

    if request.is_tool_continuation:
        try:
            messages = build_continuation(request, messages)
        except Exception as e:
            logger.warning(f"Tool continuation could not be rebuilt, treating as a fresh turn: {e}")
            messages = _general_messages(request)
            system_prompt = request.system or system_prompt_for("general_assistance")

    return Exchange(system_prompt=system_prompt, messages=messages)


def fallback_message(request: ExchangeBase) -> str:
    """Caller-safe content returned when a buffered provider call fails."""
    if isinstance(request, LessonGenerationRequest):
        return (
            f"Generated lesson on {request.topic or 'Topic'} for Grade {request.grade_level or 'N'}. "
            f"Include objectives and activities."
        )
    if isinstance(request, HomeworkHelpRequest):
        return f"Step-by-step explanation for: {request.question or 'your question'}. Focus on understanding."
    if isinstance(request, GeneralAssistanceRequest):
        return FALLBACK_GENERAL
    return FALLBACK_OTHER
