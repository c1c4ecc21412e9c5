"""
Basic tests for the API surface and the helper modules
"""
from datetime import date, datetime, timezone

from helpers.DateTimeSerializer import DateTimeSerializerVisitor
from helpers.ClubKeyEncryptionStrategy import ClubKeyEncryptionStrategy
from helpers.ClubKeyGenerator import generate_club_key, pending_request_key, new_id
from helpers.PasswordHashStrategy import PasswordHashStrategy
from helpers.AccessToken import create_access_token, verify_access_token
from models.models import EventStatus, as_utc
from config.config import SECRET_KEY


def test_health_check(client):
    """Test the health check endpoint"""
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_unknown_route_returns_message(client):
    response = client.get("/api/does-not-exist")
    assert response.status_code == 404
    assert response.json() == {"message": "Route not found"}


def test_protected_endpoint_requires_auth(client):
    """Test that protected endpoints require authentication"""
    response = client.get("/api/auth/profile")
    assert response.status_code == 401
    assert response.json()["message"] == "No token provided"


def test_garbage_token_is_rejected(client):
    response = client.get("/api/auth/profile", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid or expired token"


def test_token_for_deleted_user_is_rejected(client):
    token = create_access_token(new_id(), "student")
    response = client.get("/api/auth/profile", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json()["message"] == "User no longer exists"


def test_validation_errors_are_bad_requests(client):
    response = client.post("/api/auth/login", json={"rollNo": "X"})
    assert response.status_code == 400
    assert "password" in response.json()["message"]


def test_datetime_serialization():
    """Test that datetime objects are properly serialized"""
    visitor = DateTimeSerializerVisitor()

    dt = datetime(2024, 1, 1, 12, 30, 45)
    assert visitor.visit(dt) == "2024-01-01T12:30:45"

    data = {"createdAt": dt, "nested": [{"day": date(2024, 2, 3)}], "status": EventStatus.APPROVED, "n": 3}
    result = visitor.visit(data)
    assert result == {"createdAt": "2024-01-01T12:30:45", "nested": [{"day": "2024-02-03"}], "status": "approved", "n": 3}


def test_as_utc_normalises_naive_and_string_dates():
    naive = datetime(2024, 5, 1, 10, 0)
    assert as_utc(naive).tzinfo == timezone.utc
    assert as_utc("2024-05-01T10:00:00Z") == as_utc(naive)
    assert as_utc(None) is None


def test_club_key_encryption():
    strategy = ClubKeyEncryptionStrategy(SECRET_KEY)

    encrypted = strategy.encrypt("RBT1")
    assert encrypted != "RBT1"
    assert strategy.decrypt(encrypted) == "RBT1"
    assert strategy.matches(encrypted, "RBT1")
    assert not strategy.matches(encrypted, "rbt1")
    assert not strategy.matches(encrypted, "")


def test_club_key_from_other_secret_does_not_decrypt():
    encrypted = ClubKeyEncryptionStrategy("another-secret").encrypt("RBT1")
    assert ClubKeyEncryptionStrategy(SECRET_KEY).decrypt(encrypted) == ""


def test_generated_club_keys():
    club_id = new_id()
    key = generate_club_key(club_id, "Robotics")
    assert key == generate_club_key(club_id, "Robotics")
    assert key == key.upper()
    assert len(key) == 8
    assert generate_club_key(new_id(), "Robotics") != key


def test_pending_request_key():
    assert pending_request_key("s1", "c1") == "s1:c1"


def test_password_hashing():
    hasher = PasswordHashStrategy(rounds=4)
    hashed = hasher.hash("secret123")
    assert hashed != "secret123"
    assert hasher.verify("secret123", hashed)
    assert not hasher.verify("wrong", hashed)
    assert not hasher.verify("secret123", "")


def test_access_token_round_trip():
    token = create_access_token("user-1", "admin")
    payload = verify_access_token(token)
    assert payload["sub"] == "user-1"
    assert payload["role"] == "admin"


def test_expired_access_token():
    token = create_access_token("user-1", "admin", expires_minutes=-1)
    assert verify_access_token(token) is None


def _break_inserts(db, monkeypatch):
    async def failing_add(*args, **kwargs):
        raise RuntimeError("mongo://internal-host:27017 auth failed for user root")
    monkeypatch.setattr(db, "add", failing_add)


def _event_body():
    return {"title": "Expo", "description": "d", "date": "2030-01-01T10:00:00Z", "venue": "Hall"}


def test_server_errors_hide_details_in_production(api, client, db, coordinator_token, monkeypatch):
    _break_inserts(db, monkeypatch)
    monkeypatch.setattr("config.config.ENVIRONMENT", "production")

    response = client.post("/api/events", json=_event_body(), headers=api.auth(coordinator_token))
    assert response.status_code == 500
    assert response.json() == {"message": "Something went wrong!"}


def test_server_errors_carry_details_outside_production(api, client, db, coordinator_token, monkeypatch):
    _break_inserts(db, monkeypatch)

    response = client.post("/api/events", json=_event_body(), headers=api.auth(coordinator_token))
    assert response.status_code == 500
    body = response.json()
    assert body["message"] == "Something went wrong!"
    assert "internal-host" in body["error"]
