"""
Tests for meal listings, search, sorting, counts and stats.
"""

from unittest.mock import MagicMock

from bson import ObjectId

from database import MEALS, get_db
from main import app
from tests.conftest import ADMIN_EMAIL, make_client
from tests.factories import create_meal, create_request, create_upcoming_meal, create_user


def seed_five_meals(db):
    create_meal(db, title="Fried Rice", category="lunch", price=4.0)
    create_meal(db, title="Chicken Curry", description="Served with rice and salad", category="dinner", price=7.5)
    create_meal(db, title="Pancakes", category="breakfast", price=3.0, ingredients=["flour", "milk"])
    create_meal(db, title="Lentil Soup", category="dinner", price=2.5)
    create_meal(db, title="Omelette", category="breakfast", price=3.5, ingredients=["egg", "onion"])


class TestListMeals:
    """Tests for GET /meals."""

    def test_search_matches_title_and_description(self, client, db):
        seed_five_meals(db)

        response = client.get("/meals", params={"search": "rice", "page": 1})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert {m["title"] for m in body["data"]} == {"Fried Rice", "Chicken Curry"}
        assert body["pagination"] == {"total": 2, "page": 1, "limit": 2, "totalPages": 1}

    def test_search_is_case_insensitive_on_every_result(self, client, db):
        seed_five_meals(db)

        body = client.get("/meals", params={"search": "EGG", "size": 10}).json()

        assert [m["title"] for m in body["data"]] == ["Omelette"]
        for meal in body["data"]:
            haystack = " ".join([meal["title"], meal["category"], meal["description"], *meal["ingredients"]])
            assert "egg" in haystack.lower()

    def test_search_term_is_literal(self, client, db):
        seed_five_meals(db)

        body = client.get("/meals", params={"search": ".*"}).json()

        assert body["data"] == []
        assert body["pagination"]["total"] == 0

    def test_no_filters_pages_through_everything(self, client, db):
        seed_five_meals(db)

        seen = []
        for page in (1, 2, 3):
            body = client.get("/meals", params={"page": page}).json()
            assert body["pagination"]["total"] == 5
            assert body["pagination"]["totalPages"] == 3
            seen.extend(m["_id"] for m in body["data"])

        assert len(seen) == 5
        assert len(set(seen)) == 5

    def test_category_and_price_range(self, client, db):
        seed_five_meals(db)

        body = client.get("/meals", params={"category": "DINNER", "minPrice": "3", "maxPrice": "10"}).json()

        assert [m["title"] for m in body["data"]] == ["Chicken Curry"]

    def test_zero_or_nan_max_price_means_no_upper_bound(self, client, db):
        create_meal(db, title="Paratha", price=5.0)

        for raw in ("0", "NaN"):
            body = client.get("/meals", params={"maxPrice": raw}).json()
            assert body["pagination"]["total"] == 1
            assert [m["title"] for m in body["data"]] == ["Paratha"]

    def test_malformed_numbers_fall_back(self, client, db):
        seed_five_meals(db)

        body = client.get("/meals", params={"page": "abc", "size": "-4", "minPrice": "cheap", "maxPrice": "x"}).json()

        assert body["pagination"]["page"] == 1
        assert body["pagination"]["limit"] == 2
        assert body["pagination"]["total"] == 5
        assert len(body["data"]) == 2

    def test_no_matches_is_empty_not_error(self, client, db):
        response = client.get("/meals", params={"search": "sushi"})

        assert response.status_code == 200
        assert response.json()["data"] == []


class TestOtherListings:
    def test_hostel_search(self, client, db):
        seed_five_meals(db)

        assert len(client.get("/meals/hostel").json()) == 5
        titles = [m["title"] for m in client.get("/meals/hostel", params={"search": "soup"}).json()]
        assert titles == ["Lentil Soup"]

    def test_full_text_search_uses_text_index(self, db):
        fake_db = MagicMock()
        fake_db.__getitem__.return_value.find.return_value = [{"_id": ObjectId(), "title": "Fried Rice"}]
        app.dependency_overrides[get_db] = lambda: fake_db

        response = make_client().get("/meals/search", params={"q": "rice"})

        assert response.status_code == 200
        assert [m["title"] for m in response.json()] == ["Fried Rice"]
        fake_db.__getitem__.assert_called_with(MEALS)
        fake_db.__getitem__.return_value.find.assert_called_once_with({"$text": {"$search": "rice"}})

    def test_full_text_search_without_query(self, client):
        assert client.get("/meals/search").json() == []

    def test_sorted_by_reaction(self, client, db):
        create_meal(db, title="A", reaction={"count": 1, "userEmails": ["a@x.io"]})
        create_meal(db, title="B", reaction={"count": 3, "userEmails": ["a@x.io", "b@x.io", "c@x.io"]})
        create_meal(db, title="C")

        titles = [m["title"] for m in client.get("/mealssorted", params={"sort": "reaction", "page": 0, "size": 10}).json()]

        assert titles == ["B", "A", "C"]

    def test_sorted_by_rating_and_paged(self, client, db):
        for title, rating in (("low", 1.0), ("high", 4.5), ("mid", 3.0)):
            create_meal(db, title=title, rating=rating)

        first = client.get("/mealssorted", params={"sort": "rating", "page": 0, "size": 2}).json()
        second = client.get("/mealssorted", params={"sort": "rating", "page": 1, "size": 2}).json()

        assert [m["title"] for m in first] == ["high", "mid"]
        assert [m["title"] for m in second] == ["low"]

    def test_unknown_sort_is_natural_order(self, client, db):
        for title in ("first", "second", "third"):
            create_meal(db, title=title)

        titles = [m["title"] for m in client.get("/mealssorted", params={"sort": "spiciness"}).json()]

        assert titles == ["first", "second", "third"]

    def test_get_meal(self, client, db):
        meal = create_meal(db, title="Khichdi")

        assert client.get(f"/meal/{meal['_id']}").json()["title"] == "Khichdi"
        assert client.get(f"/meal/{ObjectId()}").status_code == 404
        assert client.get("/meal/not-an-id").status_code == 404

    def test_admin_review_pages(self, admin_client, db):
        for i in range(3):
            create_meal(db, title=f"meal {i}")

        page = admin_client.get("/reviews", params={"page": 2, "size": 2}).json()

        assert [m["title"] for m in page] == ["meal 2"]

    def test_upcoming_meals_are_zero_based(self, user_client, db):
        for i in range(3):
            create_upcoming_meal(db, title=f"soon {i}")

        page = user_client.get("/upcomingmeals", params={"page": 1, "size": 2}).json()

        assert [m["title"] for m in page] == ["soon 2"]
        assert len(user_client.get("/upcomingmealsall").json()) == 3


class TestCountsAndStats:
    def test_counts(self, user_client, db):
        seed_five_meals(db)
        create_upcoming_meal(db)
        create_request(db, "student@hostel.io", "meal-1")

        assert user_client.get("/mealscount").json() == {"count": 5}
        assert user_client.get("/upcomingmealscount").json() == {"count": 1}
        assert user_client.get("/servemealscount").json() == {"count": 1}

    def test_overview_stats(self, client, db):
        create_user(db)
        create_meal(db, category="lunch", reviews={"review_count": 2, "reviews": []})
        create_meal(db, category="lunch", reviews={"review_count": 1, "reviews": []})
        create_meal(db, category="dinner", reaction={"count": 2, "userEmails": ["a@x.io", "b@x.io"]})

        stats = client.get("/overview-stats").json()

        assert stats["totalMeals"] == 3
        assert stats["totalUsers"] == 1
        assert stats["totalReviews"] == 3
        assert {s["category"]: s["count"] for s in stats["categoryStats"]} == {"lunch": 2, "dinner": 1}
        assert {s["label"]: s["count"] for s in stats["reactionStats"]} == {"Reactions: 0": 2, "Reactions: 2": 1}

    def test_admin_data_counts_own_meals(self, admin_client, db):
        create_meal(db, distributorEmail=ADMIN_EMAIL)
        create_meal(db, distributorEmail=ADMIN_EMAIL)
        create_meal(db, distributorEmail="someone@hostel.io")

        response = admin_client.get("/admin-data", params={"adminEmail": ADMIN_EMAIL})

        assert response.json() == {"mealCount": 2}
