import math
from unittest import TestCase

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from api.feed.feed_events import subscribe
from config.database import Base, get_db
from main import app

KM_PER_DEGREE = 6371.0 * math.pi / 180
ORIGIN = (40.88, 29.20)

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


class FlakySession(Session):
    """Fails the next `failures` queries, as a dropped database connection would."""
    failures = 0

    def query(self, *entities, **kwargs):
        if FlakySession.failures > 0:
            FlakySession.failures -= 1
            raise OperationalError("SELECT reports", {}, Exception("connection reset"))
        return super().query(*entities, **kwargs)


FlakySessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, class_=FlakySession)


def override_get_flaky_db():
    db = FlakySessionLocal()
    try:
        yield db
    finally:
        db.close()


class ApiTestCase(TestCase):
    def setUp(self):
        Base.metadata.drop_all(bind=engine)
        Base.metadata.create_all(bind=engine)
        app.dependency_overrides[get_db] = override_get_db
        self.client = TestClient(app)

    def tearDown(self):
        app.dependency_overrides.clear()

    def submit(self, km_north=0.0, description="Plastic bags along the waterline", image=("beach.jpg", b"\xff\xd8\xff\xe0fake-jpeg"), **fields):
        data = {
            "reporter_id": "citizen-1",
            "latitude": str(ORIGIN[0] + km_north / KM_PER_DEGREE),
            "longitude": str(ORIGIN[1]),
            "description": description,
        }
        data.update(fields)
        files = {"image": (image[0], image[1], "image/jpeg")} if image else None
        return self.client.post("/api/reports", data=data, files=files)


class TestReportSubmission(ApiTestCase):
    def test_create_report__stores_report_and_image(self):
        response = self.submit(location_name="Caddebostan")

        self.assertEqual(response.status_code, 201, response.text)
        body = response.json()
        self.assertEqual(body["status"], "pending")
        self.assertEqual(body["location_name"], "Caddebostan")
        self.assertTrue(body["image_url"].startswith("/uploads/citizen-1/"))
        self.assertTrue(body["image_url"].endswith(".jpg"))

        image = self.client.get(body["image_url"])
        self.assertEqual(image.status_code, 200)
        self.assertEqual(image.content, b"\xff\xd8\xff\xe0fake-jpeg")

    def test_create_report__defaults_location_name_to_coordinates(self):
        response = self.submit()

        self.assertEqual(response.status_code, 201, response.text)
        self.assertEqual(response.json()["location_name"], "40.8800, 29.2000")

    def test_create_report__requires_photo(self):
        response = self.submit(image=None)

        self.assertEqual(response.status_code, 400)

    def test_create_report__requires_description(self):
        response = self.submit(description="   ")

        self.assertEqual(response.status_code, 400)

    def test_create_report__rejects_unsupported_file_type(self):
        response = self.submit(image=("notes.txt", b"not an image"))

        self.assertEqual(response.status_code, 400)

    def test_create_report__rejects_out_of_range_coordinates(self):
        response = self.submit(latitude="95.0")

        self.assertEqual(response.status_code, 422)

    def test_create_report__rejects_unsafe_reporter_id(self):
        response = self.submit(reporter_id="../../etc")

        self.assertEqual(response.status_code, 422)

    def test_create_report__survives_failing_event_subscriber(self):
        def broken(event):
            raise RuntimeError("Event loop is closed")

        subscription = subscribe(broken)
        self.addCleanup(subscription.unsubscribe)

        response = self.submit()

        self.assertEqual(response.status_code, 201, response.text)
        self.assertEqual(self.client.get(response.json()["image_url"]).status_code, 200)
        self.assertEqual(len(self.client.get("/api/reports").json()), 1)


class TestReportQueries(ApiTestCase):
    def test_list_reports__most_recent_first(self):
        first = self.submit(description="first").json()
        second = self.submit(description="second").json()

        response = self.client.get("/api/reports")

        self.assertEqual(response.status_code, 200)
        self.assertEqual([r["id"] for r in response.json()], [second["id"], first["id"]])

    def test_get_report__not_found(self):
        self.assertEqual(self.client.get("/api/reports/does-not-exist").status_code, 404)

    def test_nearby__filters_and_sorts(self):
        for km in (10.0, 4.9, 0.5, 6.0, 3.0):
            self.submit(km_north=km, description=f"report {km}")

        response = self.client.get("/api/reports/nearby", params={"latitude": ORIGIN[0], "longitude": ORIGIN[1]})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual([r["description"] for r in body["reports"]], ["report 0.5", "report 3.0", "report 4.9"])
        self.assertEqual(body["total_count"], 3)
        self.assertEqual(body["counts"]["pending"], 3)
        self.assertEqual(body["radius_km"], 5.0)


class TestStatusTriage(ApiTestCase):
    def test_update_status__follows_lifecycle(self):
        report_id = self.submit().json()["id"]

        skip = self.client.patch(f"/api/reports/{report_id}/status", json={"status": "completed"})
        start = self.client.patch(f"/api/reports/{report_id}/status", json={"status": "in_progress"})
        finish = self.client.patch(f"/api/reports/{report_id}/status", json={"status": "completed"})
        reopen = self.client.patch(f"/api/reports/{report_id}/status", json={"status": "in_progress"})

        self.assertEqual(skip.status_code, 409)
        self.assertEqual(start.json()["status"], "in_progress")
        self.assertEqual(finish.json()["status"], "completed")
        self.assertEqual(reopen.status_code, 409)

    def test_update_status__unknown_report(self):
        response = self.client.patch("/api/reports/nope/status", json={"status": "in_progress"})

        self.assertEqual(response.status_code, 404)

    def test_update_status__rejects_unknown_status(self):
        report_id = self.submit().json()["id"]

        response = self.client.patch(f"/api/reports/{report_id}/status", json={"status": "archived"})

        self.assertEqual(response.status_code, 422)

    def test_update_status__survives_failing_event_subscriber(self):
        report_id = self.submit().json()["id"]
        subscription = subscribe(lambda event: 1 / 0)
        self.addCleanup(subscription.unsubscribe)

        response = self.client.patch(f"/api/reports/{report_id}/status", json={"status": "in_progress"})

        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["status"], "in_progress")


class TestLiveFeedSocket(ApiTestCase):
    def position(self, lat=ORIGIN[0], lng=ORIGIN[1]):
        return {"type": "position", "latitude": lat, "longitude": lng}

    def test_live_feed__initial_snapshot_is_filtered(self):
        self.submit(km_north=1.0, description="near")
        self.submit(km_north=9.0, description="far")

        with self.client.websocket_connect("/api/feed/ws") as ws:
            ws.send_json(self.position())
            snapshot = ws.receive_json()

        self.assertEqual(snapshot["type"], "snapshot")
        self.assertEqual(snapshot["state"], "ready")
        self.assertFalse(snapshot["degraded"])
        self.assertEqual([r["description"] for r in snapshot["reports"]], ["near"])
        self.assertAlmostEqual(snapshot["reports"][0]["distance"], 1.0, places=4)

    def test_live_feed__pushes_nearby_insert_with_notification(self):
        with self.client.websocket_connect("/api/feed/ws") as ws:
            ws.send_json(self.position())
            self.assertEqual(ws.receive_json()["reports"], [])

            self.submit(km_north=0.5, location_name="Moda", description="Oil spill")
            notification = ws.receive_json()
            snapshot = ws.receive_json()

            self.submit(km_north=20.0, description="Far away")
            unchanged = ws.receive_json()

        self.assertEqual(notification, {"type": "notification", "title": "New report!", "body": "Moda - Oil spill..."})
        self.assertEqual([r["description"] for r in snapshot["reports"]], ["Oil spill"])
        self.assertEqual(unchanged["type"], "snapshot")
        self.assertEqual(len(unchanged["reports"]), 1)

    def test_live_feed__status_update_is_merged(self):
        report_id = self.submit(km_north=0.5).json()["id"]

        with self.client.websocket_connect("/api/feed/ws") as ws:
            ws.send_json(self.position())
            ws.receive_json()

            self.client.patch(f"/api/reports/{report_id}/status", json={"status": "in_progress"})
            snapshot = ws.receive_json()

        self.assertEqual(snapshot["reports"][0]["status"], "in_progress")
        self.assertEqual(snapshot["counts"], {"pending": 0, "in_progress": 1, "completed": 0})

    def test_live_feed__degraded_without_position(self):
        self.submit(km_north=1.0, description="older")
        self.submit(km_north=50.0, description="newer")

        with self.client.websocket_connect("/api/feed/ws") as ws:
            ws.send_json({"type": "position", "latitude": None, "longitude": None})
            snapshot = ws.receive_json()

            ws.send_json(self.position())
            filtered = ws.receive_json()

        self.assertTrue(snapshot["degraded"])
        self.assertEqual([r["description"] for r in snapshot["reports"]], ["newer", "older"])
        self.assertFalse(filtered["degraded"])
        self.assertEqual([r["description"] for r in filtered["reports"]], ["older"])

    def test_live_feed__bad_messages_get_error_frames(self):
        with self.client.websocket_connect("/api/feed/ws") as ws:
            ws.send_text("not json")
            not_json = ws.receive_json()
            ws.send_json({"type": "dance"})
            unknown = ws.receive_json()
            ws.send_json({"type": "position", "latitude": 123.0, "longitude": 0.0})
            invalid = ws.receive_json()
            ws.send_json({"type": "retry"})
            early_retry = ws.receive_json()

        for frame in (not_json, unknown, invalid, early_retry):
            self.assertEqual(frame["type"], "error")
            self.assertFalse(frame["retryable"])

    def test_live_feed__failed_fetch_is_retryable(self):
        self.submit(km_north=1.0, description="near")
        FlakySession.failures = 1
        self.addCleanup(setattr, FlakySession, "failures", 0)
        app.dependency_overrides[get_db] = override_get_flaky_db

        with self.client.websocket_connect("/api/feed/ws") as ws:
            ws.send_json(self.position())
            error = ws.receive_json()

            ws.send_json({"type": "retry"})
            snapshot = ws.receive_json()

        self.assertEqual(error["type"], "error")
        self.assertTrue(error["retryable"])
        self.assertEqual(snapshot["type"], "snapshot")
        self.assertEqual(snapshot["state"], "ready")
        self.assertEqual([r["description"] for r in snapshot["reports"]], ["near"])
