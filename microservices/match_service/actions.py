"""
Match Actions

The closed set of actions a caller can perform on an existing match. Each
action is a pydantic model tagged by its `action` literal; `MatchAction` is
the discriminated union the booking service dispatches on. The models double
as HTTP request bodies, so bodiless actions have no required fields.
"""

from typing import Annotated, Dict, FrozenSet, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from core.jwt_manager import UserRole


class ClaimAction(BaseModel):
    action: Literal["claim"] = "claim"
    assigned_items: List[str] = Field(..., min_length=1, description="Bag item ids to carry")


class AcceptAction(BaseModel):
    action: Literal["accept"] = "accept"


class RejectAction(BaseModel):
    action: Literal["reject"] = "reject"
    reason: Optional[str] = Field(None, max_length=500)


class ApproveAction(BaseModel):
    action: Literal["approve"] = "approve"


class CancelAction(BaseModel):
    action: Literal["cancel"] = "cancel"
    reason: Optional[str] = Field(None, max_length=500)


class PurchaseAction(BaseModel):
    action: Literal["purchase"] = "purchase"
    receipt_url: str = Field(..., description="Link to the purchase receipt")


class BoardAction(BaseModel):
    action: Literal["board"] = "board"


class PayAction(BaseModel):
    action: Literal["pay"] = "pay"


class DisputeAction(BaseModel):
    action: Literal["dispute"] = "dispute"
    reason: str = Field(..., min_length=1, max_length=1000)


class DeliverToVendorAction(BaseModel):
    action: Literal["deliver_to_vendor"] = "deliver_to_vendor"


class GeneratePinAction(BaseModel):
    action: Literal["generate_pin"] = "generate_pin"
    store_location: str = Field(..., min_length=1, max_length=200)


class ResendPinAction(BaseModel):
    action: Literal["resend_pin"] = "resend_pin"


class VerifyPinAction(BaseModel):
    action: Literal["verify_pin"] = "verify_pin"
    pin: str = Field(..., description="5-digit delivery PIN")


MatchAction = Annotated[
    Union[
        ClaimAction,
        AcceptAction,
        RejectAction,
        ApproveAction,
        CancelAction,
        PurchaseAction,
        BoardAction,
        PayAction,
        DisputeAction,
        DeliverToVendorAction,
        GeneratePinAction,
        ResendPinAction,
        VerifyPinAction,
    ],
    Field(discriminator="action"),
]


_TRAVELER = frozenset({UserRole.TRAVELER})
_SHOPPER = frozenset({UserRole.SHOPPER})
_PARTIES = frozenset({UserRole.SHOPPER, UserRole.TRAVELER})

ACTION_ROLES: Dict[str, FrozenSet[UserRole]] = {
    "claim": _TRAVELER,
    "accept": _TRAVELER,
    "reject": _TRAVELER,
    "approve": _SHOPPER,
    "cancel": _PARTIES,
    "purchase": _TRAVELER,
    "board": _TRAVELER,
    "pay": _SHOPPER,
    "dispute": _PARTIES,
    "deliver_to_vendor": _TRAVELER,
    "generate_pin": _TRAVELER,
    "resend_pin": _TRAVELER,
    "verify_pin": _SHOPPER,
}


__all__ = [
    "ClaimAction",
    "AcceptAction",
    "RejectAction",
    "ApproveAction",
    "CancelAction",
    "PurchaseAction",
    "BoardAction",
    "PayAction",
    "DisputeAction",
    "DeliverToVendorAction",
    "GeneratePinAction",
    "ResendPinAction",
    "VerifyPinAction",
    "MatchAction",
    "ACTION_ROLES",
]
