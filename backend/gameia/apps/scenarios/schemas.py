from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class ScenarioRequest(BaseModel):
    theme: Optional[str] = Field(default=None, max_length=200)
    difficulty: Optional[str] = Field(default=None, max_length=16)


class ScenarioOption(BaseModel):
    option_text: str
    feedback: Optional[str] = None
    is_optimal: bool = False
    impact_score: Optional[float] = None
    cost_score: Optional[float] = None
    risk_score: Optional[float] = None


class Scenario(BaseModel):
    title: str
    context: str
    difficulty: str
    xp_reward: int
    options: List[ScenarioOption] = Field(min_length=4, max_length=4)
