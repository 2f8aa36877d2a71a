"""Prompt templates for next-action generation.

The system prompt fixes the coach role and the strict JSON output shape;
the user prompt carries the caller's constraints and goals.
"""

import json
from typing import List

from nextstep.features.recommendations.schemas import GoalInput, NextActionInput

SYSTEM_PROMPT = (
    "You are a productivity coach. Your job is to analyze the user's goals, "
    "context, energy, and time constraints to recommend the single most "
    "effective \"Next Action\".\n\n"
    "Output STRICT JSON only. No markdown, no explanations outside the JSON.\n"
    "The JSON must match this schema:\n"
    "{\n"
    '  "title": "Action Title",\n'
    '  "why_this": "Reasoning...",\n'
    '  "steps": ["Step 1", "Step 2", "Step 3"],\n'
    '  "time_minutes": integer,\n'
    '  "difficulty": integer (1-5),\n'
    '  "success_criteria": "How to know it\'s done",\n'
    '  "fallback_if_stuck": "What to do if blocked"\n'
    "}\n"
    "Use between 3 and 6 steps. time_minutes must be a whole number that fits "
    "the available time."
)

RETRY_TEMPLATE = (
    "The previous attempt failed validation with error: {error}. "
    "Please fix the JSON structure and try again."
)


def goals_block(goals: List[GoalInput]) -> str:
    return json.dumps([goal.model_dump() for goal in goals], indent=2)


def build_user_prompt(data: NextActionInput, goals: List[GoalInput]) -> str:
    return (
        f"Context: {data.context.value}\n"
        f"Available Time: {data.available_minutes} minutes\n"
        f"Energy Level: {data.energy}/5\n\n"
        f"Current Goals:\n{goals_block(goals)}\n\n"
        "Please generate the next action."
    )


def build_messages(data: NextActionInput, goals: List[GoalInput], last_error: str | None = None) -> list[dict]:
    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": build_user_prompt(data, goals)},
    ]
    if last_error:
        messages.append({"role": "user", "content": RETRY_TEMPLATE.format(error=last_error)})
    return messages
