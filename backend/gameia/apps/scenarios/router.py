from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from gameia.apps.accounts import models as account_models
from gameia.security import get_current_active_user

from . import schemas, services

router = APIRouter(prefix="/scenarios", tags=["scenarios"])


@router.post("/generate", response_model=schemas.Scenario, summary="Generate a decision scenario with AI")
def generate_scenario(
    payload: schemas.ScenarioRequest,
    current_user: account_models.User = Depends(get_current_active_user),
):
    try:
        return services.generate_scenario(theme=payload.theme, difficulty=payload.difficulty)
    except services.ScenarioGatewayError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc))
