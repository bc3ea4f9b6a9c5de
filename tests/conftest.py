"""
Shared fixtures: every test runs against a fresh in-memory MongoDB (mongomock).
"""
from unittest.mock import MagicMock

import mongomock
import pytest
from fastapi.testclient import TestClient
from pymongo.errors import ServerSelectionTimeoutError

import database
import main


@pytest.fixture
def mongo(monkeypatch):
    mock_db = mongomock.MongoClient()["leatherworking-tracker-test"]
    monkeypatch.setattr(database, "db", mock_db)
    monkeypatch.setattr(main, "db", mock_db)
    return mock_db


@pytest.fixture
def client(mongo):
    with TestClient(main.app) as c:
        yield c


@pytest.fixture
def broken_db(monkeypatch):
    """A database whose every collection call fails like an unreachable server."""
    broken = MagicMock()
    collection = broken.__getitem__.return_value
    for method in ("find", "find_one", "insert_one", "find_one_and_update", "delete_one"):
        getattr(collection, method).side_effect = ServerSelectionTimeoutError("no servers available")
    monkeypatch.setattr(database, "db", broken)
    monkeypatch.setattr(main, "db", broken)
    return broken


@pytest.fixture
def customer(client):
    res = client.post("/api/customers", json={
        "name": "Test Customer",
        "email": "test@example.com",
        "phone": "123-456-7890",
    })
    assert res.status_code == 201
    return res.json()


@pytest.fixture
def material(client):
    res = client.post("/api/materials", json={
        "name": "Veg Tan Shoulder",
        "type": "Leather",
        "quantity": 12.5,
        "unit": "sq ft",
        "price": 9.75,
        "supplier": "Wickett & Craig",
    })
    assert res.status_code == 201
    return res.json()


@pytest.fixture
def product(client, material):
    res = client.post("/api/products", json={
        "name": "Bifold Wallet",
        "description": "Hand-stitched wallet",
        "price": 85,
        "category": "Wallets",
        "stock": 4,
        "materials": [{"materialId": material["_id"], "quantity": 1}],
    })
    assert res.status_code == 201
    return res.json()
