"""Card document building.

Documents are plain dicts made of ``markdown``, ``collapsible_panel`` and
``hr`` elements under a titled header. The chat binding translates them into
its own markup; every ``tag`` key counts as one rendered component.
"""

from __future__ import annotations

import string
from typing import Any, Iterable, Optional

from chatrelay.coordinators.permissions import PendingPermission
from chatrelay.coordinators.questions import PendingQuestion
from chatrelay.streaming.buffer import TurnStatus
from chatrelay.streaming.timeline import Segment, SegmentKind, ToolStatus

__all__ = [
    "CURSOR",
    "NO_OUTPUT",
    "Element",
    "build_answer_ack_card",
    "build_card",
    "build_notice_card",
    "build_permission_block",
    "build_question_block",
    "build_question_card",
    "build_segment_block",
    "count_components",
    "escape_code_fence",
    "status_banner",
    "truncate_middle",
    "truncate_text",
]

Element = dict[str, Any]

CURSOR = "▋"
NO_OUTPUT = "(no output)"

MAX_REASONING_CHARS = 2600
MAX_TOOL_OUTPUT_CHARS = 4000
MAX_TEXT_CHARS = 5000
MAX_NOTE_CHARS = 800
MAX_PERMISSION_CHARS = 1600
MAX_QUESTION_CHARS = 2600
MAX_OPTION_DESCRIPTION_CHARS = 100

_OPTION_LETTERS = string.ascii_uppercase

_STATUS_BANNERS: dict[TurnStatus, tuple[str, str]] = {
    TurnStatus.RUNNING: ("Processing...", "blue"),
    TurnStatus.COMPLETED: ("Completed", "green"),
    TurnStatus.FAILED: ("Failed", "red"),
    TurnStatus.ABORTED: ("Stopped", "grey"),
}

_TOOL_LABELS: dict[ToolStatus, tuple[str, str]] = {
    ToolStatus.PENDING: ("⏸️", "waiting"),
    ToolStatus.RUNNING: ("⏳", "running"),
    ToolStatus.COMPLETED: ("✅", "done"),
    ToolStatus.FAILED: ("❌", "failed"),
}

_RISK_LABELS = {
    "high": "⚠️ high risk",
    "medium": "⚡ medium risk",
}


def escape_code_fence(text: str) -> str:
    return text.replace("```", "` ` `")


def truncate_text(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit]}..."


def truncate_middle(text: str, limit: int) -> str:
    """Keep the head and the tail of ``text``, marking how much was cut."""
    if len(text) <= limit:
        return text
    marker = f"\n...({len(text) - limit} chars omitted)...\n"
    available = max(limit - len(marker), 200)
    head = max(int(available * 0.55), 120)
    tail = max(available - head, 80)
    return f"{text[:head]}{marker}{text[-tail:]}"


def count_components(node: Any) -> int:
    if isinstance(node, list):
        return sum(count_components(item) for item in node)
    if not isinstance(node, dict):
        return 0
    own = 1 if isinstance(node.get("tag"), str) else 0
    return own + sum(count_components(value) for value in node.values())


def _markdown(content: str) -> Element:
    return {"tag": "markdown", "content": content}


def _code_block(content: str) -> Element:
    return _markdown(f"```\n{escape_code_fence(content)}\n```")


def _panel(title: str, elements: list[Element], *, expanded: bool = False) -> Element:
    return {
        "tag": "collapsible_panel",
        "expanded": expanded,
        "header": {"title": {"tag": "plain_text", "content": title}},
        "elements": elements,
    }


def _hr() -> Element:
    return {"tag": "hr"}


def status_banner(status: TurnStatus) -> tuple[str, str]:
    """(title, colour template) of the header for ``status``."""
    return _STATUS_BANNERS[status]


def build_segment_block(segment: Segment) -> Optional[Element]:
    """Render one timeline segment; None when it has nothing to show."""
    if segment.kind == SegmentKind.REASONING:
        text = segment.content.strip()
        if not text:
            return None
        rendered = truncate_middle(text, MAX_REASONING_CHARS)
        return _panel(f"🤔 Reasoning ({len(rendered)} chars)", [_code_block(rendered)])

    if segment.kind == SegmentKind.TOOL:
        status = segment.tool_status or ToolStatus.PENDING
        icon, label = _TOOL_LABELS[status]
        kind_label = "Sub-task" if segment.variant == "subtask" else "Tool"
        output = (segment.tool_output or "").strip()
        elements = [_markdown(f"Status: **{label}**")]
        if output:
            elements.append(_code_block(truncate_middle(output, MAX_TOOL_OUTPUT_CHARS)))
        elif not status.is_terminal:
            elements.append(_markdown("Waiting for tool output..."))
        return _panel(f"{icon} {kind_label} · {segment.content or 'unknown'}", elements)

    if segment.kind == SegmentKind.TEXT:
        if not segment.content.strip():
            return None
        return _markdown(truncate_middle(segment.content, MAX_TEXT_CHARS))

    text = segment.content.strip()
    if not text:
        return None
    prefix = "⚠️ " if segment.variant == "error" else ""
    return _markdown(prefix + truncate_text(text, MAX_NOTE_CHARS))


def _risk_label(risk: str | None) -> str:
    return _RISK_LABELS.get((risk or "").lower(), "✅ low risk")


def build_permission_block(permission: PendingPermission, pending_count: int = 1) -> Element:
    tool = permission.tool.strip() or "unknown"
    description = truncate_middle(
        permission.description.strip() or "(no description)", MAX_PERMISSION_CHARS
    )
    queued = (
        f"\n> {pending_count} permission requests waiting (showing the oldest)"
        if pending_count > 1
        else ""
    )
    return _panel(
        f"🔐 Permission · {tool}",
        [
            _markdown(f"Risk: **{_risk_label(permission.risk)}**{queued}"),
            _code_block(description),
            _markdown("Reply `allow` / `deny` / `always` (or `y` / `n`)."),
        ],
        expanded=True,
    )


def _option_lines(pending: PendingQuestion, page_size: int) -> list[str]:
    options, page, pages = pending.options_page(page_size)
    offset = page * page_size
    lines = []
    for index, option in enumerate(options, start=offset):
        number = index + 1
        prefix = f"{_OPTION_LETTERS[index]}({number})." if index < len(_OPTION_LETTERS) else f"{number}."
        description = option.description.strip()
        suffix = f": {truncate_text(description, MAX_OPTION_DESCRIPTION_CHARS)}" if description else ""
        lines.append(f"{prefix} **{option.label}**{suffix}")
    if pages > 1:
        lines.append(f"Options page {page + 1}/{pages}")
    return lines


def _question_body(pending: PendingQuestion, page_size: int) -> str:
    question = pending.current
    parts: Iterable[str] = (
        f"**Question {pending.current_index + 1}/{pending.total}**",
        question.header.strip(),
        question.question.strip(),
        "\n".join(_option_lines(pending, page_size)),
    )
    return truncate_middle("\n\n".join(p for p in parts if p.strip()), MAX_QUESTION_CHARS)


def _question_hint(pending: PendingQuestion) -> str:
    if pending.current.multiple:
        return "Reply with one or more options (e.g. `A,C` or `1 3`); anything else is sent as a custom answer."
    return "Reply with one option (e.g. `A` or `1`); anything else is sent as a custom answer."


def build_question_block(pending: PendingQuestion, page_size: int = 20) -> Element:
    """Compact summary of the pending question for the live turn card."""
    return _panel(
        "🤝 Question",
        [
            _markdown(_question_body(pending, page_size)),
            _markdown(_question_hint(pending)),
            _markdown("Reply `skip` to skip this question."),
        ],
        expanded=True,
    )


def build_card(title: str, template: str, elements: list[Element]) -> dict[str, Any]:
    return {
        "header": {"title": {"tag": "plain_text", "content": title}, "template": template},
        "body": {"elements": elements or [_markdown(NO_OUTPUT)]},
    }


def build_question_card(pending: PendingQuestion, page_size: int = 20) -> dict[str, Any]:
    """Standalone prompt artifact for the current question."""
    return build_card(
        f"Question {pending.current_index + 1}/{pending.total}",
        "indigo",
        [
            _markdown(_question_body(pending, page_size)),
            _hr(),
            _markdown(_question_hint(pending)),
            _markdown("Reply `skip` to skip this question."),
        ],
    )


def build_answer_ack_card(pending: PendingQuestion, answers: list[list[str]]) -> dict[str, Any]:
    lines = []
    for index, (question, answer) in enumerate(zip(pending.questions, answers), start=1):
        shown = ", ".join(answer) if answer else "(skipped)"
        lines.append(f"{index}. {truncate_text(question.question.strip(), 120)}\n> {shown}")
    return build_card("Answers submitted", "green", [_markdown("\n\n".join(lines) or NO_OUTPUT)])


def build_notice_card(text: str, template: str = "blue") -> dict[str, Any]:
    return build_card("Notice", template, [_markdown(text)])
