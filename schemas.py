"""
Database Schemas for the Hostel Meal Management API

Each document model below corresponds to a MongoDB collection
(see the collection names in database.py). Request bodies that are not
stored as-is live at the bottom of the file.
"""
from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Reaction(BaseModel):
    count: int = Field(0, ge=0, description="Number of likes")
    userEmails: List[str] = Field(default_factory=list, description="Emails of users who liked")


class Review(BaseModel):
    review: str
    userEmail: Optional[str] = None
    name: Optional[str] = None
    createdAt: datetime = Field(default_factory=_now)


class ReviewSummary(BaseModel):
    review_count: int = Field(0, ge=0)
    reviews: List[Review] = Field(default_factory=list)


class Meal(BaseModel):
    """Published meal (collection "meals"). Unknown fields are kept verbatim."""

    model_config = ConfigDict(extra="allow")

    title: str = Field(..., description="Meal title")
    category: Optional[str] = Field(None, description="breakfast, lunch, dinner...")
    ingredients: List[str] = []
    description: Optional[str] = None
    price: float = Field(0, ge=0)
    image: Optional[str] = Field(None, description="Image URL")
    postTime: Optional[str] = None
    distributorEmail: Optional[str] = None
    distributorName: Optional[str] = None
    reaction: Reaction = Field(default_factory=Reaction)
    reviews: ReviewSummary = Field(default_factory=ReviewSummary)
    rating: float = Field(0, ge=0)


class UpcomingMeal(Meal):
    """Meal proposal awaiting publication (collection "upcomingmeals")."""


class MealUpdate(BaseModel):
    """Editable meal fields; only the ones sent are written."""

    title: Optional[str] = None
    category: Optional[str] = None
    ingredients: Optional[List[str]] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    image: Optional[str] = None
    postTime: Optional[str] = None
    distributorEmail: Optional[str] = None
    distributorName: Optional[str] = None


class RequestedMeal(BaseModel):
    """A user's request for a meal (collection "requestedmeals")."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    userEmail: EmailStr
    mealId: Optional[str] = Field(None, alias="_id", description="Requested meal reference")
    name: Optional[str] = Field(None, description="Requesting user's name")
    title: Optional[str] = None
    status: str = Field("pending", description="Free text, set by admins")
    requestedAt: datetime = Field(default_factory=_now)


class User(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = Field(None, description="Full name")
    email: EmailStr = Field(..., description="Unique by convention, not enforced by the store")
    role: Optional[str] = Field(None, description='"admin" or absent')
    badge: Optional[str] = Field(None, description="Silver, Gold or Platinum once a package is bought")


class Payment(BaseModel):
    """Package payment record (collection "packagepaymentdata"), append-only."""

    model_config = ConfigDict(extra="allow")

    userEmail: EmailStr
    amount: float = Field(..., ge=0)
    packageName: Optional[str] = None
    transactionId: Optional[str] = None
    paidAt: datetime = Field(default_factory=_now)


# ===================== Request bodies =====================

class TokenRequest(BaseModel):
    """Identity payload signed into the session token."""

    model_config = ConfigDict(extra="allow")

    email: EmailStr


class LikeRequest(BaseModel):
    userEmail: EmailStr


class ReviewCreate(BaseModel):
    review: Optional[str] = None
    userEmail: Optional[str] = None
    name: Optional[str] = None


class ReviewDelete(BaseModel):
    userEmail: str


class ReviewsReset(BaseModel):
    review_count: int = Field(..., ge=0)
    reviews: List[dict] = []


class RatingUpdate(BaseModel):
    newUserRating: Optional[Any] = None
    newRating: Optional[Any] = None


class StatusUpdate(BaseModel):
    status: str


class BadgeUpdate(BaseModel):
    userEmail: Optional[str] = None
    packageName: Optional[str] = None


class ServedMealsBatch(BaseModel):
    meals: List[dict]


class PaymentIntentRequest(BaseModel):
    amount: Optional[int] = Field(None, description="Smallest currency unit, e.g. cents")
