"""
Claim API routes.

- GET  /getClaims?patientId=...     current month's claims + points
- POST /useClaim                    consume one claim unit
- POST /redeemPoints                spend points
"""
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from benefits.core.database import get_db
from benefits.features.claims import service as claims_service


router = APIRouter(tags=["claims"])


class ClaimOut(BaseModel):
    name: str
    used: int
    limit: int


class ClaimsResponse(BaseModel):
    claims: List[ClaimOut]
    points: int


class UseClaimRequest(BaseModel):
    """Fields are validated by the service so missing values map to 400."""
    patientId: Optional[Any] = None
    claimName: Optional[Any] = None


class UseClaimResponse(BaseModel):
    message: str
    claim: ClaimOut


class RedeemPointsRequest(BaseModel):
    patientId: Optional[Any] = None
    pointsToRedeem: Optional[Any] = None


class RedeemPointsResponse(BaseModel):
    message: str
    points: int


@router.get("/getClaims", response_model=ClaimsResponse)
def get_claims(patientId: Optional[str] = Query(None), db: Session = Depends(get_db)):
    """
    Current month's claims across all purchases, plus points.

    Errors:
        400: patientId missing
        404: Subscriber not found
    """
    summary = claims_service.get_claims_and_points(db, patientId)
    return summary.to_dict()


@router.post("/useClaim", response_model=UseClaimResponse)
def use_claim(request: UseClaimRequest, db: Session = Depends(get_db)):
    """
    Consume one unit of a claim for the current month.

    Errors:
        400: patientId or claimName missing
        403: Claim limit reached
        404: Claim not found
    """
    claim = claims_service.use_claim(db, request.patientId, request.claimName)
    return {"message": "Claim incremented successfully", "claim": claim.model_dump()}


@router.post("/redeemPoints", response_model=RedeemPointsResponse)
def redeem_points(request: RedeemPointsRequest, db: Session = Depends(get_db)):
    """
    Redeem points from the subscriber's balance.

    Errors:
        400: Invalid data or not enough points
        404: Subscriber not found
    """
    remaining = claims_service.redeem_points(db, request.patientId, request.pointsToRedeem)
    return {"message": "Points redeemed successfully", "points": remaining}
