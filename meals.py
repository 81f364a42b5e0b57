"""
Meal queries, reactions, reviews, ratings and publication.

Likes and review appends are single atomic updates. Review deletion and the
rating average are read-modify-write, so their writes are guarded on the
value read (compare-and-swap) and retried a few times.
"""

import logging
import math
import re
from typing import Any, List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import MEALS, UPCOMING_MEALS, USERS, find_by_id, parse_object_id, serialize_doc, serialize_docs, update_result
from errors import ConflictError, NotFoundError, ValidationError
from schemas import Review

logger = logging.getLogger("hostel.meals")

SEARCH_FIELDS = ["title", "category", "description", "ingredients", "postTime", "price"]

SORT_MODES = {
    "reaction": [("reaction.count", -1)],
    "reviews": [("reviews.review_count", -1)],
    "rating": [("rating", -1)],
}

MAX_SAFE_INTEGER = 2 ** 53 - 1
CAS_ATTEMPTS = 3


# ===================== Query parameters =====================

def parse_int(value: Optional[str], default: int, minimum: int = 0) -> int:
    """Lenient integer parsing: anything unparseable or below ``minimum`` gives ``default``."""
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    return number if number >= minimum else default


def parse_float(value: Optional[str], default: float) -> float:
    try:
        number = float(str(value).strip())
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def contains(term: str) -> dict:
    return {"$regex": re.escape(term), "$options": "i"}


def text_match(search: str) -> dict:
    """Case-insensitive substring match of ``search`` on any searchable field."""
    return {"$or": [{name: contains(search)} for name in SEARCH_FIELDS]}


def listing_filter(search: str = "", category: str = "", min_price: float = 0, max_price: float = MAX_SAFE_INTEGER) -> dict:
    clauses: List[dict] = []
    if search:
        clauses.append(text_match(search))
    if category:
        clauses.append({"category": contains(category)})
    clauses.append({"price": {"$gte": min_price, "$lte": max_price}})
    return {"$and": clauses}


# ===================== Listings =====================

def list_meals(db: Database, search: str, category: str, min_price: float, max_price: float, page: int, limit: int) -> dict:
    query = listing_filter(search, category, min_price, max_price)
    total = db[MEALS].count_documents(query)
    cursor = db[MEALS].find(query).skip((page - 1) * limit).limit(limit)
    return {
        "success": True,
        "data": serialize_docs(cursor),
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": math.ceil(total / limit),
        },
    }


def search_hostel_meals(db: Database, search: Optional[str]) -> list:
    query = text_match(search) if search else {}
    return serialize_docs(db[MEALS].find(query))


def full_text_search(db: Database, q: Optional[str]) -> list:
    if not q or not q.strip():
        return []
    return serialize_docs(db[MEALS].find({"$text": {"$search": q}}))


def list_sorted(db: Database, sort: Optional[str], page: int, size: int) -> list:
    cursor = db[MEALS].find()
    criteria = SORT_MODES.get(sort or "")
    if criteria:
        cursor = cursor.sort(criteria)
    return serialize_docs(cursor.skip(page * size).limit(size))


def overview_stats(db: Database) -> dict:
    totals = list(db[MEALS].aggregate([
        {"$group": {"_id": None, "total": {"$sum": "$reviews.review_count"}}},
    ]))
    categories = db[MEALS].aggregate([{"$group": {"_id": "$category", "count": {"$sum": 1}}}])
    reactions = db[MEALS].aggregate([{"$group": {"_id": "$reaction.count", "count": {"$sum": 1}}}])
    return {
        "totalMeals": db[MEALS].count_documents({}),
        "totalUsers": db[USERS].count_documents({}),
        "totalReviews": totals[0]["total"] if totals else 0,
        "categoryStats": [{"category": row["_id"], "count": row["count"]} for row in categories],
        "reactionStats": [{"label": f"Reactions: {row['_id']}", "count": row["count"]} for row in reactions],
    }


def user_reviews(db: Database, email: str) -> list:
    """Every review written by ``email``, tagged with its meal id and title."""
    found = []
    for meal in db[MEALS].find({"reviews.reviews.userEmail": email}):
        for review in meal["reviews"]["reviews"]:
            if review.get("userEmail") == email:
                found.append({**review, "_id": str(meal["_id"]), "mealTitle": meal.get("title")})
    return found


# ===================== Reactions =====================

def like(db: Database, collection_name: str, meal_id: str, user_email: str) -> dict:
    """Add ``user_email`` to the meal's reaction, once.

    The membership check and the increment happen in one conditional update,
    so concurrent likes never lose a count.
    """
    oid = parse_object_id(meal_id)
    if oid is None:
        raise NotFoundError("Meal not found")
    meal = db[collection_name].find_one_and_update(
        {"_id": oid, "reaction.userEmails": {"$ne": user_email}},
        {"$inc": {"reaction.count": 1}, "$push": {"reaction.userEmails": user_email}},
        return_document=ReturnDocument.AFTER,
    )
    if meal is None:
        if db[collection_name].find_one({"_id": oid}, {"_id": 1}) is None:
            raise NotFoundError("Meal not found")
        raise ConflictError("User has already liked this meal")
    reaction = meal.get("reaction") or {}
    return {"count": reaction.get("count", 0), "userEmails": reaction.get("userEmails", [])}


# ===================== Reviews =====================

def add_review(db: Database, meal_id: str, text: Optional[str], user_email: Optional[str], name: Optional[str]) -> dict:
    if not text or not text.strip():
        raise ValidationError("Review text is required")
    oid = parse_object_id(meal_id)
    if oid is None:
        raise NotFoundError("Meal not found")
    entry = Review(review=text, userEmail=user_email, name=name).model_dump()
    result = db[MEALS].update_one(
        {"_id": oid},
        {"$push": {"reviews.reviews": entry}, "$inc": {"reviews.review_count": 1}},
    )
    if result.matched_count == 0:
        raise NotFoundError("Meal not found")
    return update_result(result)


def delete_review(db: Database, meal_id: str, user_email: str) -> None:
    """Remove the first review by ``user_email`` and decrement the counter."""
    oid = parse_object_id(meal_id)
    if oid is None:
        raise NotFoundError("Meal not found")
    for _ in range(CAS_ATTEMPTS):
        meal = db[MEALS].find_one({"_id": oid})
        if meal is None:
            raise NotFoundError("Meal not found")
        summary = meal.get("reviews") or {}
        reviews = list(summary.get("reviews") or [])
        index = next((i for i, r in enumerate(reviews) if r.get("userEmail") == user_email), None)
        if index is None:
            raise NotFoundError("Review not found for the given user")
        read_count = summary.get("review_count")
        del reviews[index]
        remaining = max((read_count if read_count is not None else len(reviews) + 1) - 1, 0)
        result = db[MEALS].update_one(
            {"_id": oid, "reviews.review_count": read_count},
            {"$set": {"reviews.reviews": reviews, "reviews.review_count": remaining}},
        )
        if result.matched_count:
            return
        logger.info("Reviews of meal %s changed while deleting, retrying", meal_id)
    raise ConflictError("Meal reviews were modified concurrently, try again")


def reset_reviews(db: Database, meal_id: str, review_count: int, reviews: list) -> None:
    oid = parse_object_id(meal_id)
    if oid is None:
        raise NotFoundError("Meal not found")
    result = db[MEALS].update_one(
        {"_id": oid},
        {"$set": {"reviews.review_count": review_count, "reviews.reviews": reviews}},
    )
    if result.matched_count == 0:
        raise NotFoundError("Meal not found")


# ===================== Rating =====================

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def update_rating(db: Database, meal_id: str, raw_rating: Any) -> dict:
    """Store the mean of the current rating and ``raw_rating``.

    The result is ``(old + new) / 2``: no rating count is kept, so this is not
    a running average over all ratings.
    """
    try:
        new_rating = float(raw_rating)
    except (TypeError, ValueError):
        raise ValidationError("Invalid rating value")
    if not math.isfinite(new_rating):
        raise ValidationError("Invalid rating value")

    oid = parse_object_id(meal_id)
    if oid is None:
        raise NotFoundError("Meal not found")
    for _ in range(CAS_ATTEMPTS):
        meal = db[MEALS].find_one({"_id": oid})
        if meal is None:
            raise NotFoundError("Meal not found")
        old_rating = meal.get("rating")
        if not _is_number(old_rating):
            raise ValidationError("Meal rating is invalid")
        average = (old_rating + new_rating) / 2
        result = db[MEALS].update_one({"_id": oid, "rating": old_rating}, {"$set": {"rating": average}})
        if result.matched_count:
            meal["rating"] = average
            return serialize_doc(meal)
        logger.info("Rating of meal %s changed while updating, retrying", meal_id)
    raise ConflictError("Meal rating was modified concurrently, try again")


# ===================== Publication =====================

def publish(db: Database, meal_id: str) -> None:
    """Move an upcoming meal into the published meals.

    Insert then delete, without a transaction. The copy keeps the source
    _id, so a retry after a failed delete finds the meal already published
    and only finishes the removal.
    """
    meal = find_by_id(db, UPCOMING_MEALS, meal_id)
    if meal is None:
        raise NotFoundError("Meal not found")
    try:
        db[MEALS].insert_one(meal)
    except DuplicateKeyError:
        logger.warning("Meal %s was already published, removing it from upcoming meals", meal_id)
    db[UPCOMING_MEALS].delete_one({"_id": meal["_id"]})
    logger.info("Published meal %s", meal_id)


# ===================== Requested meals =====================

def requested_meals_filter(name: Optional[str], user_email: Optional[str], exact_email: bool) -> dict:
    query: dict = {}
    if name:
        query["name"] = contains(name)
    if user_email:
        query["userEmail"] = user_email if exact_email else contains(user_email)
    return query
