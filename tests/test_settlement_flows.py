from ledger import CYCLE_BADGE

WALLET = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
PASSING = {"q1": "C", "q2": "B", "q3": "B", "q4": "C", "q5": "B"}


def unlock(client, user="u"):
    client.post(f"/quiz/{CYCLE_BADGE}/submit", json={"userId": user, "answers": PASSING})


def test_locked_badge_is_never_sent_to_settlement(client, settlement):
    resp = client.post("/solana/award-badge", json={"userId": "u", "walletAddress": WALLET})
    assert resp.status_code == 403
    assert settlement.calls == []


def test_badge_mints_once_per_wallet(client, settlement, db):
    unlock(client)
    resp = client.post("/solana/award-badge", json={"userId": "u", "walletAddress": WALLET})
    assert resp.status_code == 200
    assert resp.json()["signature"] == f"sig-{CYCLE_BADGE}"

    again = client.post("/solana/award-badge", json={"userId": "u", "walletAddress": WALLET})
    assert again.status_code == 409
    assert len(settlement.named("mint_badge")) == 1

    record = db["badge_mint"].find_one({"wallet_address": WALLET, "badge_id": CYCLE_BADGE})
    assert record["status"] == "minted"


def test_failed_mint_keeps_points_and_allows_retry(client, settlement, db):
    unlock(client)
    settlement.fail = True
    resp = client.post("/solana/award-badge", json={"userId": "u", "walletAddress": WALLET})
    assert resp.status_code == 502
    assert "try again" in resp.json()["detail"]
    assert db["badge_mint"].count_documents({}) == 0
    assert client.get("/points/u").json()["points"] == 50

    settlement.fail = False
    resp = client.post("/solana/award-badge", json={"userId": "u", "walletAddress": WALLET})
    assert resp.status_code == 200


def test_redeem_on_chain_spends_after_settlement(client, settlement, ledger):
    ledger.add_points("u", 120)
    resp = client.post("/solana/redeem-points", json={"userId": "u", "walletAddress": WALLET, "pointsCost": 100})
    assert resp.status_code == 200
    assert resp.json()["points_after"] == 20
    assert settlement.named("pay_out_redemption") == [("pay_out_redemption", WALLET, 100)]
    assert ledger.get("u").reserved == 0


def test_failed_redeem_leaves_balance(client, settlement, ledger):
    ledger.add_points("u", 120)
    settlement.fail = True
    resp = client.post("/solana/redeem-points", json={"userId": "u", "walletAddress": WALLET, "pointsCost": 100})
    assert resp.status_code == 502
    state = ledger.get("u")
    assert state.points == 120
    assert state.reserved == 0


def test_redeem_without_balance_skips_settlement(client, settlement, ledger):
    ledger.add_points("u", 10)
    resp = client.post("/solana/redeem-points", json={"userId": "u", "walletAddress": WALLET, "pointsCost": 100})
    assert resp.status_code == 409
    assert settlement.calls == []


def test_award_points_requires_local_balance(client, settlement, ledger):
    resp = client.post("/solana/award-points", json={"userId": "u", "walletAddress": WALLET, "amount": 5})
    assert resp.status_code == 400
    assert settlement.calls == []

    ledger.add_points("u", 5)
    resp = client.post("/solana/award-points", json={"userId": "u", "walletAddress": WALLET, "amount": 5})
    assert resp.status_code == 200


def test_build_burn_tx_and_points_mint(client, settlement, admin_headers):
    resp = client.post("/solana/build-burn-tx", json={"walletAddress": WALLET, "amount": 3})
    assert resp.json()["tx_base64"] == "AAAA"

    assert client.get("/solana/points-mint").json()["points_mint"] == settlement.points_mint
    resp = client.post("/solana/points-mint", headers=admin_headers)
    assert resp.json()["created"] is False


def test_points_are_mirrored_on_chain_once(client, settlement, ledger):
    ledger.add_points("u", 5)
    body = {"userId": "u", "walletAddress": WALLET, "amount": 5}
    assert client.post("/solana/award-points", json=body).status_code == 200
    for _ in range(3):
        assert client.post("/solana/award-points", json=body).status_code == 400
    assert settlement.named("award_points") == [("award_points", WALLET, 5)]
    assert ledger.get("u").mirrored == 5
    assert ledger.balance("u") == 5


def test_newly_earned_points_can_be_mirrored(client, settlement, ledger):
    ledger.add_points("u", 5)
    body = {"userId": "u", "walletAddress": WALLET, "amount": 5}
    client.post("/solana/award-points", json=body)
    ledger.record_article_read("u", "phases-overview", 10)
    assert client.post("/solana/award-points", json=dict(body, amount=10)).status_code == 200
    assert client.post("/solana/award-points", json=dict(body, amount=1)).status_code == 400


def test_failed_mirror_can_be_retried(client, settlement, ledger):
    ledger.add_points("u", 5)
    body = {"userId": "u", "walletAddress": WALLET, "amount": 5}
    settlement.fail = True
    assert client.post("/solana/award-points", json=body).status_code == 502
    assert ledger.get("u").mirrored == 0

    settlement.fail = False
    assert client.post("/solana/award-points", json=body).status_code == 200
    assert ledger.get("u").mirrored == 5
