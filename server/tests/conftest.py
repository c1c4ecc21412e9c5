"""
pytest configuration: the app runs against an in-memory Mongo per test
"""
import os
import asyncio
import tempfile

# settings are read at import time, so they go before the app import
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["MONGODB_TRANSACTIONS"] = "false"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="clubhub-uploads-")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from fastapi.testclient import TestClient

import main
from cli import seed_admin
from database.DB import Database
from mongomock_motor import AsyncMongoMockClient

ADMIN_ROLL_NO = "ADMIN001"
ADMIN_PASSWORD = "adminpass"


class Api:
    """Small helpers around the test client for setting up users and clubs"""

    def __init__(self, client: TestClient):
        self.client = client
        self._counter = 0

    @staticmethod
    def auth(token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}

    def login(self, roll_no: str, password: str) -> str:
        response = self.client.post("/api/auth/login", json={"rollNo": roll_no, "password": password})
        assert response.status_code == 200, response.text
        return response.json()["token"]

    def register_student(self, roll_no: str = None, password: str = "secret123", name: str = None):
        """Register a student and return (token, user)"""
        self._counter += 1
        roll_no = roll_no or f"STU{self._counter:03d}"
        response = self.client.post("/api/auth/register", json={
            "name": name or f"Student {self._counter}",
            "email": f"{roll_no.lower()}@college.edu",
            "password": password,
            "rollNo": roll_no,
        })
        assert response.status_code == 201, response.text
        data = response.json()
        return data["token"], data["user"]

    def create_club(self, admin_token: str, name: str = "Robotics", club_key: str = "RBT1", enrollment_open: bool = True) -> dict:
        response = self.client.post("/api/clubs", json={
            "name": name,
            "description": f"{name} club",
            "category": "Technical",
            "clubKey": club_key,
            "enrollmentOpen": enrollment_open,
        }, headers=self.auth(admin_token))
        assert response.status_code == 201, response.text
        return response.json()["club"]

    def create_coordinator(self, admin_token: str, club_id: str, roll_no: str = "COORD01", password: str = "coordpass"):
        """Create a coordinator for the club and return (token, user)"""
        response = self.client.post("/api/auth/create-coordinator", json={
            "name": f"Coordinator {roll_no}",
            "email": f"{roll_no.lower()}@college.edu",
            "password": password,
            "rollNo": roll_no,
            "clubId": club_id,
        }, headers=self.auth(admin_token))
        assert response.status_code == 201, response.text
        return self.login(roll_no, password), response.json()["user"]

    def join(self, token: str, club_id: str, club_key: str = "RBT1"):
        return self.client.post(f"/api/clubs/{club_id}/join", json={"clubKey": club_key}, headers=self.auth(token))


@pytest.fixture
def client(monkeypatch):
    """Create a test client backed by a fresh in-memory database"""
    mock_client = AsyncMongoMockClient()
    monkeypatch.setattr(main, "Database", lambda: Database(client=mock_client))
    with TestClient(main.app) as test_client:
        yield test_client


@pytest.fixture
def db(client):
    return main.app.state.db


@pytest.fixture
def api(client):
    return Api(client)


@pytest.fixture
def admin_token(api, db):
    asyncio.run(seed_admin(db, "Admin", "admin@college.edu", ADMIN_PASSWORD, ADMIN_ROLL_NO))
    return api.login(ADMIN_ROLL_NO, ADMIN_PASSWORD)


@pytest.fixture
def club(api, admin_token):
    """Open club 'Robotics' with key RBT1"""
    return api.create_club(admin_token)


@pytest.fixture
def coordinator_token(api, admin_token, club):
    token, _ = api.create_coordinator(admin_token, club["_id"])
    return token
