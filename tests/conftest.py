import mongomock
import pytest
from fastapi.testclient import TestClient

import config
import main
from database import ensure_indexes, get_db
from errors import SettlementError
from ledger import Ledger
from logs import DailyLogStore


class FakeSettlement:
    """Records every settlement call; set ``fail`` to simulate an unreachable network."""

    def __init__(self):
        self.calls = []
        self.fail = False
        self.balances = {}
        self.points_mint = "PNKmint1111111111111111111111111111111111"

    def _call(self, name, *args):
        self.calls.append((name,) + args)
        if self.fail:
            raise SettlementError("connection refused")

    def named(self, name):
        return [c for c in self.calls if c[0] == name]

    def mint_badge(self, wallet_address, badge_id):
        self._call("mint_badge", wallet_address, badge_id)
        return {
            "signature": f"sig-{badge_id}",
            "mint": "BadgeMint111",
            "explorer_url": f"https://explorer.solana.com/tx/sig-{badge_id}?cluster=devnet",
        }

    def award_points(self, wallet_address, amount):
        self._call("award_points", wallet_address, amount)
        return {"signature": "sig-award", "points_mint": self.points_mint}

    def pay_out_redemption(self, wallet_address, amount):
        self._call("pay_out_redemption", wallet_address, amount)
        return {"signature": "sig-payout", "lamports_sent": amount * 10000}

    def build_burn_transaction(self, wallet_address, amount):
        self._call("build_burn_transaction", wallet_address, amount)
        return {"tx_base64": "AAAA", "recent_blockhash": "hash", "points_mint": self.points_mint}

    def create_points_mint(self):
        self._call("create_points_mint")
        self.points_mint = "NewMint111"
        return self.points_mint

    def points_balance(self, wallet_address):
        self._call("points_balance", wallet_address)
        return self.balances.get(wallet_address, 0)


@pytest.fixture
def db():
    database = mongomock.MongoClient().thinkpink_test
    ensure_indexes(database)
    return database


@pytest.fixture
def settlement():
    return FakeSettlement()


@pytest.fixture
def ledger(db):
    return Ledger(db)


@pytest.fixture
def store(db):
    return DailyLogStore(db)


@pytest.fixture
def client(db, settlement, tmp_path, monkeypatch):
    monkeypatch.setattr(config, "UPLOAD_DIR", str(tmp_path))
    monkeypatch.setattr(config, "ADMIN_USERNAMES", ["admin"])
    main.requests_counter.clear()
    main.app.dependency_overrides[get_db] = lambda: db
    main.app.dependency_overrides[main.get_settlement] = lambda: settlement
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def admin_headers(client):
    resp = client.post("/api/users/signup", json={"username": "admin", "password": "pw"})
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['tokens']['access']}"}


@pytest.fixture
def user_headers(client):
    resp = client.post("/api/users/signup", json={"username": "Sam Lee", "password": "pw"})
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['tokens']['access']}"}
