"""
Decision scenario generation through the AI chat-completion gateway.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Optional, Tuple

from . import gateway
from .gateway import ScenarioGatewayError

logger = logging.getLogger(__name__)

DEFAULT_DIFFICULTY = "medium"
OPTIONS_COUNT = 4
TEMPERATURE = 0.8
SUGGESTED_THEMES = (
    "leadership",
    "crisis management",
    "negotiation",
    "innovation",
    "people management",
    "market strategy",
    "digital transformation",
    "corporate sustainability",
)

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


def xp_for_difficulty(difficulty: Optional[str]) -> int:
    if difficulty == "hard":
        return 150
    if difficulty == "easy":
        return 75
    return 100


def build_prompts(theme: Optional[str], difficulty: Optional[str]) -> Tuple[str, str]:
    level = difficulty or DEFAULT_DIFFICULTY
    system_prompt = f"""You are an expert in corporate training and in writing business decision scenarios.
Create a realistic and challenging decision scenario to train managers.

IMPORTANT RULES:
1. The scenario must be realistic and based on real business situations
2. There must be exactly {OPTIONS_COUNT} decision options
3. Only ONE option is the optimal one (is_optimal: true)
4. The other options have different levels of impact (positive, neutral or negative)
5. Every option has feedback explaining its consequences
6. Scores must be coherent: impact_score (-100 to 100), cost_score (0-100), risk_score (0-100)

Answer ONLY with valid JSON in this format:
{{
  "title": "Scenario title",
  "context": "Detailed description of the situation (2-3 sentences)",
  "difficulty": "{level}",
  "xp_reward": {xp_for_difficulty(difficulty)},
  "options": [
    {{
      "option_text": "Text of option 1",
      "feedback": "Feedback explaining the consequences",
      "is_optimal": false,
      "impact_score": 50,
      "cost_score": 30,
      "risk_score": 40
    }},
    ...3 more options
  ]
}}"""
    if theme:
        user_prompt = f'Create a business decision scenario about the theme: "{theme}". Difficulty: {level}.'
    else:
        user_prompt = (
            f"Create an interesting and challenging business decision scenario. Difficulty: {level}. "
            f"Pick a theme among: {', '.join(SUGGESTED_THEMES)}."
        )
    return system_prompt, user_prompt


def extract_json(content: str) -> str:
    """Strip a ```json fenced block when the model wraps its answer in one."""
    match = _FENCE_RE.search(content)
    return (match.group(1) if match else content).strip()


def parse_scenario(content: str) -> Dict[str, Any]:
    try:
        scenario = json.loads(extract_json(content))
    except ValueError as exc:
        raise ScenarioGatewayError("AI returned invalid JSON") from exc
    if (
        not isinstance(scenario, dict)
        or not scenario.get("title")
        or not scenario.get("context")
        or not isinstance(scenario.get("options"), list)
        or len(scenario["options"]) != OPTIONS_COUNT
    ):
        raise ScenarioGatewayError("Invalid scenario structure")
    return scenario


def generate_scenario(*, theme: Optional[str] = None, difficulty: Optional[str] = None) -> Dict[str, Any]:
    system_prompt, user_prompt = build_prompts(theme, difficulty)
    content = gateway.chat_completion(
        [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        temperature=TEMPERATURE,
    )
    scenario = parse_scenario(content)
    scenario.setdefault("difficulty", difficulty or DEFAULT_DIFFICULTY)
    scenario.setdefault("xp_reward", xp_for_difficulty(difficulty))
    logger.info("Scenario generated", extra={"theme": theme, "difficulty": scenario["difficulty"]})
    return scenario
