"""
Suggestion gateway.

Wraps the LLM for the goal creation flows: clarifying a goal, proposing
milestones, breaking a milestone into steps and proposing the next step.

Generation never fails the user-visible operation: model errors and
unparseable output degrade to heuristic extraction, then to fixed generic
suggestions. Clarification has no sensible default and surfaces LLM errors.
"""
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, List, Optional, Sequence

from core.config_manager import SystemConfig, config as default_config
from core.exceptions import LLMError, ValidationError
from core.llm_adapter import LLMProvider, get_llm
from core.logger import get_logger
from core.utils import extract_json_array, load_prompt

logger = get_logger("suggestions")

_MINUTES_PATTERN = re.compile(r"(\d+)\s*min(?:ute)?s?", re.IGNORECASE)
_PAREN_MINUTES_PATTERN = re.compile(r"[\(\[]\s*\d+\s*min(?:ute)?s?\s*[\)\]]", re.IGNORECASE)
_NUMBERING_PATTERN = re.compile(r"^\s*(?:\d+[\.\)]|[-*•])\s*")
_NEXT_STEP_PATTERN = re.compile(r"Step \d+:\s*(.+)")
_NEXT_TIME_PATTERN = re.compile(r"Time:\s*(\d+)")


@dataclass
class StepSuggestion:
    text: str
    time_estimate: int


def fallback_milestones(goal: str) -> List[str]:
    return [
        f"Define what success looks like for {goal}",
        "Create a concrete plan with deadlines",
        "Complete the first major deliverable",
        "Review progress and adjust the plan",
    ]


def fallback_steps(milestone_title: str) -> List[StepSuggestion]:
    return [
        StepSuggestion(f"Research best practices for {milestone_title}", 45),
        StepSuggestion(f"Create a detailed action plan for {milestone_title}", 30),
        StepSuggestion(f"Complete the first key task for {milestone_title}", 60),
    ]


def _positive_minutes(value: Any, default: int) -> int:
    try:
        minutes = int(value)
    except (TypeError, ValueError):
        return default
    return minutes if minutes > 0 else default


def parse_milestone_titles(text: str, limit: int) -> List[str]:
    """JSON array first, then one title per line, then split on inline numbering."""
    data = extract_json_array(text)
    if data is not None:
        titles = [str(item).strip() for item in data if str(item).strip()]
        return titles[:limit]

    lines = [
        _NUMBERING_PATTERN.sub("", line).strip().strip('"')
        for line in text.splitlines()
    ]
    titles = [line for line in lines if line and not line.startswith(("[", "]"))]
    if len(titles) <= 1:
        # "1. Foo 2. Bar 3. Baz" on a single line
        parts = re.split(r"\n|(?:\d+\.\s*)", text)
        titles = [p.strip() for p in parts if p.strip() and not p.strip().startswith(("[", "]"))]
    return titles[:limit]


def parse_step_suggestions(text: str, default_minutes: int, limit: int) -> List[StepSuggestion]:
    data = extract_json_array(text)
    if data is not None:
        steps = []
        for item in data:
            if isinstance(item, dict):
                step_text = str(item.get("text") or "").strip() or "New step"
                minutes = item.get("timeEstimate", item.get("time_estimate"))
            else:
                step_text, minutes = str(item).strip(), None
            if step_text:
                steps.append(StepSuggestion(step_text, _positive_minutes(minutes, default_minutes)))
        return steps[:limit]

    steps = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        minutes = default_minutes
        time_match = _MINUTES_PATTERN.search(line)
        if time_match:
            minutes = _positive_minutes(time_match.group(1), default_minutes)
            line = _PAREN_MINUTES_PATTERN.sub("", line).strip()
        line = _NUMBERING_PATTERN.sub("", line).strip()
        if line:
            steps.append(StepSuggestion(line, minutes))
    return steps[:limit]


class SuggestionGateway:
    """LLM-backed suggestions with deterministic fallbacks."""

    def __init__(self, llm: Optional[LLMProvider] = None, settings: Optional[SystemConfig] = None):
        self.settings = settings or default_config
        self._llm = llm

    @property
    def llm(self) -> LLMProvider:
        if self._llm is None:
            self._llm = get_llm(self.settings.SUGGESTION_PROFILE)
        return self._llm

    def _generate(self, prompt: str, system_prompt: str, temperature: Optional[float] = None) -> str:
        response = self.llm.generate(
            prompt,
            system_prompt=system_prompt,
            temperature=self.settings.GENERATION_TEMPERATURE if temperature is None else temperature,
            max_tokens=self.settings.GENERATION_MAX_TOKENS,
        )
        if not response.success:
            raise LLMError(response.error or "empty response", model_name=response.model)
        return response.content or ""

    # ------------------------------------------------------------------
    # Goal clarification
    # ------------------------------------------------------------------
    def clarify_goal(self, goal: str, purpose: Optional[str] = None) -> str:
        goal_text = (goal or "").strip()
        if not goal_text:
            raise ValidationError("Goal is required", field="goal")

        system_prompt = load_prompt("clarify_goal") or "Clarify the user's goal in one line."
        prompt = goal_text if not purpose else f"{goal_text}\nPurpose: {purpose}"
        try:
            content = self._generate(prompt, system_prompt, self.settings.CLARIFY_TEMPERATURE)
        except LLMError as e:
            logger.error("Error clarifying goal: %s", e)
            raise

        cleaned = content.replace('"', "").strip()
        return cleaned or goal_text

    # ------------------------------------------------------------------
    # Milestones
    # ------------------------------------------------------------------
    def generate_milestones(self, goal: str, purpose: Optional[str] = None) -> List[str]:
        goal_text = (goal or "").strip()
        if not goal_text:
            raise ValidationError("Goal is required", field="goal")

        system_prompt = load_prompt("generate_milestones") or "List 4-5 milestones as a JSON array."
        prompt = f"Goal: {goal_text}" + (f"\nPurpose: {purpose}" if purpose else "")
        try:
            content = self._generate(prompt, system_prompt)
        except LLMError as e:
            logger.error("Error generating milestones: %s", e)
            return fallback_milestones(goal_text)

        titles = parse_milestone_titles(content, self.settings.MAX_MILESTONES)
        if not titles:
            logger.warning("No milestones parsed for goal %r, using fallback", goal_text)
            return fallback_milestones(goal_text)
        return titles

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------
    def generate_milestone_steps(
        self,
        goal_title: str,
        milestone_title: str,
        purpose: Optional[str] = None,
        due_date: Optional[date] = None,
    ) -> List[StepSuggestion]:
        if not (goal_title or "").strip() or not (milestone_title or "").strip():
            raise ValidationError("Goal title and milestone title are required")

        prompt = f"Goal: {goal_title}\nMilestone: {milestone_title}"
        if purpose:
            prompt += f"\nPurpose: {purpose}"
        if due_date:
            prompt += f"\nDue Date: {due_date}"
        prompt += (
            "\n\nBreak down this milestone into 3-5 specific, actionable steps that will lead to "
            "completing this milestone. Each step should be clear, concrete, and achievable in a "
            "single sitting."
        )
        system_prompt = load_prompt(
            "generate_steps", {"max_minutes": self.settings.MAX_STEP_MINUTES}
        ) or "Return a JSON array of {text, timeEstimate} steps."

        try:
            content = self._generate(prompt, system_prompt)
        except LLMError as e:
            logger.error("Error generating steps: %s", e)
            return fallback_steps(milestone_title)

        steps = parse_step_suggestions(
            content, self.settings.DEFAULT_STEP_MINUTES, self.settings.MAX_GENERATED_STEPS
        )
        if not steps:
            logger.warning("No steps parsed for milestone %r, using fallback", milestone_title)
            return fallback_steps(milestone_title)
        return steps

    def build_next_step_prompt(
        self,
        goal: str,
        milestone: Optional[str],
        purpose: Optional[str],
        steps: Sequence[Any],
        due_date: Optional[date] = None,
    ) -> str:
        """steps are existing steps in display order; anything with .text and .completed."""
        next_number = len(steps) + 1
        prompt = f"Goal: {goal}"
        if milestone:
            prompt += f"\nMilestone: {milestone}"
        if purpose:
            prompt += f"\nPurpose: {purpose}"
        if due_date:
            prompt += f"\nDue Date: {due_date}"

        numbered = list(enumerate(steps, start=1))
        completed = [(n, s) for n, s in numbered if s.completed]
        in_progress = [(n, s) for n, s in numbered if not s.completed]
        if completed:
            prompt += "\n\nCompleted Steps:"
            for n, s in completed:
                prompt += f"\nStep {n}: {s.text}"
        if in_progress:
            prompt += "\n\nIn Progress Steps:"
            for n, s in in_progress:
                prompt += f"\nStep {n}: {s.text}"

        prompt += (
            f"\n\nWhat should be Step {next_number} for this milestone? This step must be different "
            "from all previous steps and move the milestone forward. Also estimate how many minutes "
            f"this step will take (maximum {self.settings.MAX_STEP_MINUTES} minutes)."
            f"\n\nRespond in this format:\nStep {next_number}: [step description]\nTime: [estimated minutes]"
        )
        return prompt

    def generate_next_step(
        self,
        goal: str,
        milestone: Optional[str] = None,
        purpose: Optional[str] = None,
        steps: Sequence[Any] = (),
        due_date: Optional[date] = None,
    ) -> StepSuggestion:
        goal_text = (goal or "").strip()
        if not goal_text:
            raise ValidationError("Goal is required", field="goal")

        fallback = StepSuggestion(
            f"Take the next small action toward {milestone or goal_text}",
            self.settings.DEFAULT_STEP_MINUTES,
        )
        system_prompt = load_prompt(
            "next_step", {"max_minutes": self.settings.MAX_STEP_MINUTES}
        ) or "Suggest the next step as 'Step N: ...' and 'Time: N'."
        prompt = self.build_next_step_prompt(goal_text, milestone, purpose, steps, due_date)

        try:
            content = self._generate(prompt, system_prompt).strip()
        except LLMError as e:
            logger.error("Error generating next step: %s", e)
            return fallback

        step_match = _NEXT_STEP_PATTERN.search(content)
        time_match = _NEXT_TIME_PATTERN.search(content)
        if not step_match or not time_match:
            logger.warning("Unexpected next-step format, using fallback: %r", content[:200])
            return fallback

        minutes = _positive_minutes(time_match.group(1), self.settings.DEFAULT_STEP_MINUTES)
        return StepSuggestion(
            text=step_match.group(1).strip(),
            time_estimate=min(minutes, self.settings.MAX_STEP_MINUTES),
        )
