import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Body, Depends, FastAPI, Query, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

import config
import database
import meals
import middleware
from auth import (
    AuthService,
    Identity,
    clear_session_cookie,
    enforce,
    get_auth_service,
    issue_token,
    require_same_email,
    set_session_cookie,
)
from database import (
    MEALS,
    PAYMENTS,
    REQUESTED_MEALS,
    SERVED_MEALS,
    UPCOMING_MEALS,
    USERS,
    delete_result,
    find_by_id,
    get_db,
    insert_many_result,
    insert_result,
    parse_object_id,
    serialize_doc,
    serialize_docs,
    update_result,
)
from errors import ConflictError, NotFoundError, ValidationError
from payments import PaymentClient, get_payment_client
from schemas import (
    BadgeUpdate,
    LikeRequest,
    Meal,
    MealUpdate,
    Payment,
    PaymentIntentRequest,
    RatingUpdate,
    RequestedMeal,
    ReviewCreate,
    ReviewDelete,
    ReviewsReset,
    ServedMealsBatch,
    StatusUpdate,
    TokenRequest,
    UpcomingMeal,
    User,
)

logging.basicConfig(level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO), format=config.LOG_FORMAT)
logger = logging.getLogger("hostel.main")

BADGES = {"silver": "Silver", "gold": "Gold", "platinum": "Platinum"}
PREMIUM_BADGES = set(BADGES.values())


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Hostel Management API in %s mode", config.APP_ENV)
    if database.db is not None:
        database.ensure_indexes(database.db)
    else:
        logger.warning("DATABASE_URL is not set; data routes will fail")
    try:
        yield
    finally:
        database.close()
        logger.info("Hostel Management API stopped")


app = FastAPI(title="Hostel Management API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
middleware.install(app)


def _require_id(_id: str, message: str):
    oid = parse_object_id(_id)
    if oid is None:
        raise NotFoundError(message)
    return oid


# ===================== Service =====================
@app.get("/", response_class=PlainTextResponse, dependencies=[Depends(enforce("root"))])
def root():
    return "Hostel Management System server is running"


@app.get("/health", dependencies=[Depends(enforce("health"))])
def health():
    response = {
        "backend": "running",
        "database": "not configured",
        "database_name": config.DATABASE_NAME,
        "collections": [],
    }
    if database.db is not None:
        try:
            response["collections"] = database.db.list_collection_names()
            response["database"] = "connected"
        except PyMongoError as e:
            response["database"] = f"error: {str(e)[:80]}"
    return response


# ===================== Session =====================
@app.post("/jwt", dependencies=[Depends(enforce("issue_jwt"))])
def issue_jwt(payload: TokenRequest, response: Response):
    token = issue_token(payload.model_dump(mode="json"))
    set_session_cookie(response, token)
    return {"status": True}


@app.post("/logout", dependencies=[Depends(enforce("logout"))])
def logout(response: Response):
    clear_session_cookie(response)
    return {"status": True}


# ===================== Payments =====================
@app.post("/create-payment-intent", dependencies=[Depends(enforce("create_payment_intent"))])
def create_payment_intent(payload: PaymentIntentRequest, payments: PaymentClient = Depends(get_payment_client)):
    if not payload.amount:
        raise ValidationError("Amount is required in the request body.")
    intent = payments.create_payment_intent(payload.amount)
    logger.info("Created payment intent %s for %d", intent.get("id"), payload.amount)
    return {"success": True, "amount": payload.amount, "clientSecret": intent.get("client_secret")}


@app.post("/package-payment-data", dependencies=[Depends(enforce("save_package_payment"))])
def save_package_payment(payload: Payment, db: Database = Depends(get_db)):
    result = db[PAYMENTS].insert_one(payload.model_dump())
    return insert_result(result)


@app.get("/payments/{email}", dependencies=[Depends(enforce("list_payments"))])
def list_payments(email: str, db: Database = Depends(get_db)):
    payments = serialize_docs(db[PAYMENTS].find({"userEmail": email}))
    if payments:
        return {"data": payments}
    return {"message": "No payments found for the specified email.", "data": []}


# ===================== Meal queries =====================
@app.get("/meals", dependencies=[Depends(enforce("list_meals"))])
def list_meals(
    search: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[str] = Query(None, alias="minPrice"),
    max_price: Optional[str] = Query(None, alias="maxPrice"),
    page: Optional[str] = None,
    size: Optional[str] = None,
    db: Database = Depends(get_db),
):
    return meals.list_meals(
        db,
        search=search or "",
        category=category or "",
        min_price=meals.parse_float(min_price, 0),
        max_price=meals.parse_float(max_price, meals.MAX_SAFE_INTEGER) or meals.MAX_SAFE_INTEGER,
        page=meals.parse_int(page, 1, minimum=1),
        limit=meals.parse_int(size, config.MEALS_PAGE_SIZE, minimum=1),
    )


@app.get("/meals/search", dependencies=[Depends(enforce("search_meals_text"))])
def search_meals_text(q: Optional[str] = None, db: Database = Depends(get_db)):
    return meals.full_text_search(db, q)


@app.get("/meals/hostel", dependencies=[Depends(enforce("list_hostel_meals"))])
def list_hostel_meals(search: Optional[str] = None, db: Database = Depends(get_db)):
    return meals.search_hostel_meals(db, search)


@app.get("/mealssorted", dependencies=[Depends(enforce("list_sorted_meals"))])
def list_sorted_meals(sort: Optional[str] = None, page: Optional[str] = None, size: Optional[str] = None, db: Database = Depends(get_db)):
    return meals.list_sorted(db, sort, meals.parse_int(page, 0), meals.parse_int(size, 10, minimum=1))


@app.get("/meal/{meal_id}", dependencies=[Depends(enforce("get_meal"))])
def get_meal(meal_id: str, db: Database = Depends(get_db)):
    meal = find_by_id(db, MEALS, meal_id)
    if not meal:
        raise NotFoundError("Meal not found")
    return serialize_doc(meal)


@app.get("/mealscount", dependencies=[Depends(enforce("meals_count"))])
def meals_count(db: Database = Depends(get_db)):
    return {"count": db[MEALS].estimated_document_count()}


@app.get("/servemealscount", dependencies=[Depends(enforce("served_meals_count"))])
def served_meals_count(db: Database = Depends(get_db)):
    return {"count": db[REQUESTED_MEALS].estimated_document_count()}


@app.get("/upcomingmealscount", dependencies=[Depends(enforce("upcoming_meals_count"))])
def upcoming_meals_count(db: Database = Depends(get_db)):
    return {"count": db[UPCOMING_MEALS].estimated_document_count()}


@app.get("/overview-stats", dependencies=[Depends(enforce("overview_stats"))])
def overview_stats(db: Database = Depends(get_db)):
    return meals.overview_stats(db)


@app.get("/admin-data", dependencies=[Depends(enforce("admin_data"))])
def admin_data(admin_email: str = Query(..., alias="adminEmail"), db: Database = Depends(get_db)):
    return {"mealCount": db[MEALS].count_documents({"distributorEmail": admin_email})}


# ===================== Meal management =====================
@app.post("/meals", dependencies=[Depends(enforce("create_meal"))])
def create_meal(payload: Meal, db: Database = Depends(get_db)):
    result = db[MEALS].insert_one(payload.model_dump())
    logger.info("Created meal %s", result.inserted_id)
    return insert_result(result)


@app.put("/meals/{meal_id}", dependencies=[Depends(enforce("update_meal"))])
def update_meal(meal_id: str, payload: MealUpdate, db: Database = Depends(get_db)):
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No meal fields to update")
    result = db[MEALS].update_one({"_id": _require_id(meal_id, "Meal not found")}, {"$set": changes})
    return update_result(result)


@app.delete("/mealssorted/{meal_id}", dependencies=[Depends(enforce("delete_meal"))])
def delete_meal(meal_id: str, db: Database = Depends(get_db)):
    result = db[MEALS].delete_one({"_id": _require_id(meal_id, "Meal not found")})
    return delete_result(result)


# ===================== Reactions, reviews & ratings =====================
@app.put("/meals/{meal_id}/like", dependencies=[Depends(enforce("like_meal"))])
def like_meal(meal_id: str, payload: LikeRequest, db: Database = Depends(get_db)):
    reaction = meals.like(db, MEALS, meal_id, payload.userEmail)
    return {"message": "Meal liked successfully", "reaction": reaction}


@app.put("/api/update-review/{meal_id}", dependencies=[Depends(enforce("add_review"))])
def add_review(meal_id: str, payload: ReviewCreate, db: Database = Depends(get_db)):
    return meals.add_review(db, meal_id, payload.review, payload.userEmail, payload.name)


@app.delete("/meals/{meal_id}/reviews", dependencies=[Depends(enforce("delete_review"))])
def delete_review(meal_id: str, payload: ReviewDelete, db: Database = Depends(get_db)):
    meals.delete_review(db, meal_id, payload.userEmail)
    return {"message": "Review deleted successfully"}


@app.put("/mealssorted/{meal_id}/reviews", dependencies=[Depends(enforce("reset_reviews"))])
def reset_reviews(meal_id: str, payload: ReviewsReset, db: Database = Depends(get_db)):
    meals.reset_reviews(db, meal_id, payload.review_count, payload.reviews)
    return {"success": True, "message": "Reviews reset successfully"}


@app.patch("/meals/{meal_id}/rating", dependencies=[Depends(enforce("update_rating"))])
def update_rating(meal_id: str, payload: RatingUpdate, db: Database = Depends(get_db)):
    raw = payload.newUserRating if payload.newUserRating is not None else payload.newRating
    return meals.update_rating(db, meal_id, raw)


@app.get("/reviews", dependencies=[Depends(enforce("list_reviews_page"))])
def list_reviews_page(page: Optional[str] = None, size: Optional[str] = None, db: Database = Depends(get_db)):
    page_number = meals.parse_int(page, 1, minimum=1)
    page_size = meals.parse_int(size, 10, minimum=1)
    return serialize_docs(db[MEALS].find().skip((page_number - 1) * page_size).limit(page_size))


@app.get("/allreviews", dependencies=[Depends(enforce("list_all_reviews"))])
def list_all_reviews(db: Database = Depends(get_db)):
    return serialize_docs(db[MEALS].find().limit(10))


@app.get("/reviews/{email}", dependencies=[Depends(enforce("list_user_reviews"))])
def list_user_reviews(email: str, db: Database = Depends(get_db)):
    return meals.user_reviews(db, email)


# ===================== Upcoming meals =====================
@app.post("/upcomingmeals", dependencies=[Depends(enforce("create_upcoming_meal"))])
def create_upcoming_meal(payload: UpcomingMeal, db: Database = Depends(get_db)):
    result = db[UPCOMING_MEALS].insert_one(payload.model_dump())
    return insert_result(result)


@app.get("/upcomingmeals", dependencies=[Depends(enforce("list_upcoming_meals"))])
def list_upcoming_meals(page: Optional[str] = None, size: Optional[str] = None, db: Database = Depends(get_db)):
    page_number = meals.parse_int(page, 0)
    page_size = meals.parse_int(size, 10, minimum=1)
    return serialize_docs(db[UPCOMING_MEALS].find().skip(page_number * page_size).limit(page_size))


@app.get("/upcomingmealsall", dependencies=[Depends(enforce("list_all_upcoming_meals"))])
def list_all_upcoming_meals(db: Database = Depends(get_db)):
    return serialize_docs(db[UPCOMING_MEALS].find())


@app.put("/upcomingmeals/{meal_id}/like", dependencies=[Depends(enforce("like_upcoming_meal"))])
def like_upcoming_meal(meal_id: str, payload: LikeRequest, db: Database = Depends(get_db)):
    reaction = meals.like(db, UPCOMING_MEALS, meal_id, payload.userEmail)
    return {"message": "Meal liked successfully", "reaction": reaction}


@app.post("/publish-meal/{meal_id}", dependencies=[Depends(enforce("publish_meal"))])
def publish_meal(meal_id: str, db: Database = Depends(get_db)):
    meals.publish(db, meal_id)
    return {"message": "Meal published successfully"}


# ===================== Requested & served meals =====================
@app.post("/requestedmeals", dependencies=[Depends(enforce("create_requested_meal"))])
def create_requested_meal(payload: RequestedMeal, db: Database = Depends(get_db)):
    if not payload.mealId:
        raise ValidationError("Requested meal reference (_id) is required")
    if db[REQUESTED_MEALS].find_one({"userEmail": payload.userEmail, "mealId": payload.mealId}):
        raise ConflictError("You have already requested this meal.")
    try:
        result = db[REQUESTED_MEALS].insert_one(payload.model_dump())
    except DuplicateKeyError:
        # lost the race against a concurrent request for the same meal
        raise ConflictError("You have already requested this meal.")
    return insert_result(result)


@app.get("/requestedmeals", dependencies=[Depends(enforce("list_requested_meals"))])
def list_requested_meals(name: Optional[str] = None, user_email: Optional[str] = Query(None, alias="userEmail"), db: Database = Depends(get_db)):
    query = meals.requested_meals_filter(name, user_email, exact_email=True)
    return serialize_docs(db[REQUESTED_MEALS].find(query))


@app.get("/requestedmeals/{email}", dependencies=[Depends(enforce("list_user_requested_meals"))])
def list_user_requested_meals(email: str, db: Database = Depends(get_db)):
    return serialize_docs(db[REQUESTED_MEALS].find({"userEmail": email}))


@app.delete("/requestedmeals/{request_id}", dependencies=[Depends(enforce("delete_requested_meal"))])
def delete_requested_meal(request_id: str, db: Database = Depends(get_db)):
    result = db[REQUESTED_MEALS].delete_one({"_id": _require_id(request_id, "Requested meal not found")})
    return delete_result(result)


@app.put("/update-requested-meals", dependencies=[Depends(enforce("replace_requested_meal_snapshots"))])
def replace_requested_meal_snapshots(snapshots: List[dict] = Body(...), db: Database = Depends(get_db)):
    if not snapshots or not snapshots[0].get("userEmail"):
        raise ValidationError("A non-empty list of requested meals with userEmail is required")
    result = db[REQUESTED_MEALS].update_many(
        {"userEmail": snapshots[0]["userEmail"]},
        {"$set": {"meals": snapshots}},
    )
    return {"success": True, "message": "Meals updated successfully", "result": update_result(result)}


@app.patch("/servedmeals/{request_id}", dependencies=[Depends(enforce("update_request_status"))])
def update_request_status(request_id: str, payload: StatusUpdate, db: Database = Depends(get_db)):
    result = db[REQUESTED_MEALS].update_one(
        {"_id": _require_id(request_id, "Meal not found or already updated.")},
        {"$set": {"status": payload.status}},
    )
    if result.modified_count == 0:
        raise NotFoundError("Meal not found or already updated.")
    logger.info("Requested meal %s is now %r", request_id, payload.status)
    return {"message": "Meal status updated successfully."}


@app.get("/servedmeals", dependencies=[Depends(enforce("list_served_meals"))])
def list_served_meals(
    page: Optional[str] = None,
    size: Optional[str] = None,
    name: Optional[str] = None,
    user_email: Optional[str] = Query(None, alias="userEmail"),
    db: Database = Depends(get_db),
):
    page_number = meals.parse_int(page, 1, minimum=1)
    page_size = meals.parse_int(size, 10, minimum=1)
    query = meals.requested_meals_filter(name, user_email, exact_email=False)
    found = db[REQUESTED_MEALS].find(query).skip((page_number - 1) * page_size).limit(page_size)
    return {"meals": serialize_docs(found), "totalCount": db[REQUESTED_MEALS].count_documents(query)}


@app.post("/insert-served-meals", status_code=201, dependencies=[Depends(enforce("insert_served_meals"))])
def insert_served_meals(payload: ServedMealsBatch, db: Database = Depends(get_db)):
    if not payload.meals:
        raise ValidationError("At least one served meal is required")
    # snapshots keep the request id; each served record gets its own _id
    records = []
    for snapshot in payload.meals:
        record = {k: v for k, v in snapshot.items() if k != "_id"}
        if "_id" in snapshot:
            record["requestId"] = snapshot["_id"]
        records.append(record)
    result = db[SERVED_MEALS].insert_many(records)
    return {"message": "Meals inserted successfully", **insert_many_result(result)}


# ===================== Users =====================
@app.post("/users", dependencies=[Depends(enforce("register_user"))])
def register_user(payload: User, db: Database = Depends(get_db)):
    # find-then-insert: email uniqueness is not enforced by the store
    if db[USERS].find_one({"email": payload.email}):
        return {"message": "User already Exist", "insertedId": None}
    result = db[USERS].insert_one(payload.model_dump(exclude_none=True, exclude={"role", "badge"}))
    return insert_result(result)


@app.get("/users", dependencies=[Depends(enforce("list_users"))])
def list_users(name: Optional[str] = None, email: Optional[str] = None, db: Database = Depends(get_db)):
    query = {}
    if name:
        query["name"] = meals.contains(name)
    if email:
        query["email"] = meals.contains(email)
    return serialize_docs(db[USERS].find(query))


@app.get("/users/email/{email}", dependencies=[Depends(enforce("get_user_by_email"))])
def get_user_by_email(email: str, db: Database = Depends(get_db)):
    user = db[USERS].find_one({"email": email})
    if not user:
        raise NotFoundError("User not found")
    return serialize_doc(user)


@app.delete("/users/{user_id}", dependencies=[Depends(enforce("delete_user"))])
def delete_user(user_id: str, db: Database = Depends(get_db)):
    result = db[USERS].delete_one({"_id": _require_id(user_id, "User not found")})
    return delete_result(result)


@app.patch("/users/admin/{user_id}", dependencies=[Depends(enforce("make_admin"))])
def make_admin(user_id: str, db: Database = Depends(get_db)):
    result = db[USERS].update_one({"_id": _require_id(user_id, "User not found")}, {"$set": {"role": "admin"}})
    if result.modified_count:
        logger.info("Promoted user %s to admin", user_id)
    return update_result(result)


@app.get("/user/admin/{email}", dependencies=[Depends(enforce("check_admin"))])
def check_admin(email: str, auth: AuthService = Depends(get_auth_service)):
    return {"admin": auth.is_admin(email)}


@app.get("/users/premium/{email}", dependencies=[Depends(enforce("check_premium"))])
def check_premium(email: str, db: Database = Depends(get_db)) -> bool:
    user = db[USERS].find_one({"email": email}, {"badge": 1})
    return bool(user) and user.get("badge") in PREMIUM_BADGES


@app.patch("/update-badge")
def update_badge(payload: BadgeUpdate, identity: Identity = Depends(enforce("update_badge")), db: Database = Depends(get_db)):
    if not payload.userEmail or not payload.packageName:
        raise ValidationError("userEmail and packageName are required.")
    require_same_email(identity, payload.userEmail)
    badge = BADGES.get(payload.packageName, "")
    result = db[USERS].update_one({"email": payload.userEmail}, {"$set": {"badge": badge}})
    if result.modified_count == 0:
        raise NotFoundError("User not found.")
    return {"success": True, "message": "Badge updated successfully."}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
