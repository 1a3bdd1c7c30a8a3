"""Escrow HTTP router — wallet, goals & proof submission."""

from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.auth import current_user_id
from app.escrow.models import Goal, GoalList, GoalStatus, Proof, SubmitProofResult, User, WalletSummary
from app.escrow.service import EscrowService, get_escrow_service

router = APIRouter(tags=["escrow"])


class OpenWalletRequest(BaseModel):
    display_name: str = ""


class CreateGoalRequest(BaseModel):
    title: str
    deposit_amount: Decimal


class CreateGoalResponse(BaseModel):
    message: str
    goal: Goal
    remaining_balance: Decimal


class CloseGoalRequest(BaseModel):
    status: GoalStatus


# ---------------------------------------------------------------------------
# /wallet
# ---------------------------------------------------------------------------


@router.post("/wallet", response_model=User)
async def open_wallet(
    body: OpenWalletRequest | None = None,
    user_id: str = Depends(current_user_id),
    service: EscrowService = Depends(get_escrow_service),
) -> User:
    return await service.open_wallet(user_id, body.display_name if body else "")


@router.get("/wallet", response_model=WalletSummary)
async def get_wallet(
    user_id: str = Depends(current_user_id),
    service: EscrowService = Depends(get_escrow_service),
) -> WalletSummary:
    return await service.get_wallet(user_id)


# ---------------------------------------------------------------------------
# /goals
# ---------------------------------------------------------------------------


@router.post("/goals", response_model=CreateGoalResponse, status_code=201)
async def create_goal(
    body: CreateGoalRequest,
    user_id: str = Depends(current_user_id),
    service: EscrowService = Depends(get_escrow_service),
) -> CreateGoalResponse:
    goal, balance = await service.create_goal(user_id, body.title, body.deposit_amount)
    return CreateGoalResponse(message="Goal created successfully!", goal=goal, remaining_balance=balance)


@router.get("/goals", response_model=GoalList)
async def list_goals(
    user_id: str = Depends(current_user_id),
    service: EscrowService = Depends(get_escrow_service),
) -> GoalList:
    return await service.list_goals(user_id)


@router.get("/goals/{goal_id}", response_model=Goal)
async def get_goal(
    goal_id: str,
    user_id: str = Depends(current_user_id),
    service: EscrowService = Depends(get_escrow_service),
) -> Goal:
    return await service.get_goal(user_id, goal_id)


@router.put("/goals/{goal_id}/milestones/{milestone_id}/proof", response_model=SubmitProofResult)
async def submit_proof(
    goal_id: str,
    milestone_id: str,
    proof: Proof,
    user_id: str = Depends(current_user_id),
    service: EscrowService = Depends(get_escrow_service),
) -> SubmitProofResult:
    return await service.submit_proof(user_id, goal_id, milestone_id, proof)


@router.post("/goals/{goal_id}/close", response_model=Goal)
async def close_goal(
    goal_id: str,
    body: CloseGoalRequest,
    user_id: str = Depends(current_user_id),
    service: EscrowService = Depends(get_escrow_service),
) -> Goal:
    return await service.close_goal(user_id, goal_id, body.status)
