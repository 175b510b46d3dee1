"""
Partner Matching API Router
Match transactions to partners, learn patterns, and user assignment actions
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.dependencies import get_user_id, require_db, to_http_error
from app.exceptions import MatchingError
from app.models.partner import Partner
from app.services.ownership import get_owned
from app.services.partner_assignment import (
    assign_partner_to_transaction,
    localize_global_partner,
    remove_partner_from_transaction,
    update_partner,
)
from app.services.partner_matcher import match_partners
from app.services.pattern_application import apply_patterns_to_transactions
from app.services.pattern_learning import learn_partner_patterns

router = APIRouter(prefix="/api/v1/partners", tags=["partners"])


class MatchPartnersRequest(BaseModel):
    transaction_ids: Optional[List[str]] = None
    match_all: bool = False


class LearnPatternsRequest(BaseModel):
    transaction_id: Optional[str] = None
    background: bool = False


class AssignPartnerRequest(BaseModel):
    transaction_id: str
    partner_id: str
    partner_type: str = Field(..., description="user or global")
    matched_by: str = Field(..., description="manual, suggestion, auto or ai")
    confidence: Optional[float] = None


class RemovePartnerRequest(BaseModel):
    transaction_id: str


class LocalizeRequest(BaseModel):
    global_partner_id: str


class UpdatePartnerRequest(BaseModel):
    name: Optional[str] = None
    aliases: Optional[List[str]] = None
    website: Optional[str] = None
    vat_id: Optional[str] = None
    ibans: Optional[List[str]] = None
    email_domains: Optional[List[str]] = None
    is_active: Optional[bool] = None


@router.post("/match")
def match_partners_endpoint(
    request: MatchPartnersRequest,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(require_db),
):
    """
    Match transactions against the user's and global partners.

    Without transaction_ids only unassigned transactions are matched;
    match_all re-runs every transaction (user-confirmed assignments stay).
    """
    try:
        return match_partners(db, user_id, transaction_ids=request.transaction_ids, match_all=request.match_all)
    except MatchingError as e:
        raise to_http_error(e)


@router.post("/apply-patterns")
def apply_patterns_endpoint(
    user_id: str = Depends(get_user_id),
    db: Session = Depends(require_db),
):
    """Apply every learned pattern to the user's unassigned transactions."""
    return apply_patterns_to_transactions(db, user_id)


@router.post("/assign")
def assign_partner_endpoint(
    request: AssignPartnerRequest,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(require_db),
):
    try:
        return assign_partner_to_transaction(
            db, user_id,
            request.transaction_id,
            request.partner_id,
            request.partner_type,
            request.matched_by,
            request.confidence,
        )
    except MatchingError as e:
        raise to_http_error(e)


@router.post("/remove")
def remove_partner_endpoint(
    request: RemovePartnerRequest,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(require_db),
):
    try:
        return remove_partner_from_transaction(db, user_id, request.transaction_id)
    except MatchingError as e:
        raise to_http_error(e)


@router.post("/localize")
def localize_partner_endpoint(
    request: LocalizeRequest,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(require_db),
):
    """Copy a global partner into the user's partners and move its assignments."""
    try:
        return localize_global_partner(db, user_id, request.global_partner_id)
    except MatchingError as e:
        raise to_http_error(e)


@router.post("/{partner_id}/learn")
def learn_patterns_endpoint(
    partner_id: str,
    request: Optional[LearnPatternsRequest] = None,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(require_db),
) -> Dict[str, Any]:
    """
    Learn patterns for one partner now, bypassing the debounce queue.

    Oracle outages do not fail the request: the stored patterns are kept and
    the response carries oracle_error. With background=true the run is
    queued on the worker instead.
    """
    transaction_id = request.transaction_id if request else None
    if request and request.background:
        try:
            get_owned(db, Partner, partner_id, user_id, "partner")
        except MatchingError as e:
            raise to_http_error(e)
        from app.actors.learning import learn_partner
        learn_partner.send(user_id, partner_id, transaction_id)
        return {"partner_id": partner_id, "queued": True}

    try:
        return learn_partner_patterns(db, user_id, partner_id, transaction_id=transaction_id)
    except MatchingError as e:
        raise to_http_error(e)


@router.patch("/{partner_id}")
def update_partner_endpoint(
    partner_id: str,
    request: UpdatePartnerRequest,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(require_db),
):
    changes = request.model_dump(exclude_unset=True)
    try:
        return update_partner(db, user_id, partner_id, changes)
    except MatchingError as e:
        raise to_http_error(e)
