import json
import re

import pytest

from app.core.config import get_settings
from app.core.errors import AlreadyOwned, GameNotFound, GatewayError, OrderInProgress, ValidationError
from app.models.transaction import Transaction
from app.services.purchases import generate_order_id, initiate_purchase
from app.services.transactions import TransactionStore


@pytest.fixture
def settings():
    return get_settings().model_copy()


def test_order_id_embeds_timestamp_and_user():
    order_id = generate_order_id(42)
    assert re.fullmatch(r"ORDER-\d{13}-42-[0-9A-F]{4}", order_id)
    assert generate_order_id(42) != order_id


def test_initiate_purchase_persists_waiting_order(db, make_user, make_game, gateway_client, fake_gateway, settings):
    buyer = make_user(name="Buyer")
    game = make_game(price=75000)

    transaction = initiate_purchase(db, gateway_client, buyer, game.slug, "qris", settings)

    assert transaction.status == "waiting"
    assert transaction.amount == 75000
    assert transaction.payment_method == "QRIS"
    assert transaction.qr_code_url
    assert transaction.invoice_number == transaction.order_id
    sent = json.loads(fake_gateway.requests[-1].content)
    assert sent["order"]["amount"] == 75000
    assert sent["payment"]["payment_method_types"] == ["QRIS"]
    assert sent["customer"]["id"] == str(buyer.id)


def test_gateway_failure_persists_nothing(db, make_user, make_game, gateway_client, fake_gateway, settings):
    buyer = make_user(name="Buyer")
    game = make_game()
    fake_gateway.checkout_status = 500
    fake_gateway.checkout_body = {"error": "boom"}

    with pytest.raises(GatewayError):
        initiate_purchase(db, gateway_client, buyer, game.slug, "QRIS", settings)

    assert db.query(Transaction).count() == 0


def test_unknown_game(db, make_user, gateway_client, settings):
    with pytest.raises(GameNotFound):
        initiate_purchase(db, gateway_client, make_user(), "no-such-game", "QRIS", settings)


def test_free_game_cannot_be_bought(db, make_user, make_game, gateway_client, fake_gateway, settings):
    game = make_game(price=0, price_type="free")
    with pytest.raises(ValidationError):
        initiate_purchase(db, gateway_client, make_user(), game.slug, "QRIS", settings)
    assert fake_gateway.requests == []


def test_uploader_cannot_buy_own_game(db, make_user, make_game, gateway_client, settings):
    uploader = make_user(name="Uploader")
    game = make_game(owner=uploader)
    with pytest.raises(AlreadyOwned):
        initiate_purchase(db, gateway_client, uploader, game.slug, "QRIS", settings)


def test_owner_of_paid_order_cannot_buy_again(db, make_user, make_game, gateway_client, settings):
    buyer = make_user(name="Buyer")
    game = make_game()
    first = initiate_purchase(db, gateway_client, buyer, game.slug, "QRIS", settings)
    TransactionStore(db).update_status(first.order_id, "success")

    with pytest.raises(AlreadyOwned):
        initiate_purchase(db, gateway_client, buyer, game.slug, "QRIS", settings)


def test_concurrent_orders_allowed_by_default(db, make_user, make_game, gateway_client, settings):
    buyer = make_user(name="Buyer")
    game = make_game()
    first = initiate_purchase(db, gateway_client, buyer, game.slug, "QRIS", settings)
    second = initiate_purchase(db, gateway_client, buyer, game.slug, "EWALLET", settings)
    assert first.order_id != second.order_id


def test_concurrent_orders_can_be_blocked(db, make_user, make_game, gateway_client, settings):
    settings.ALLOW_CONCURRENT_ORDERS = False
    buyer = make_user(name="Buyer")
    game = make_game()
    first = initiate_purchase(db, gateway_client, buyer, game.slug, "QRIS", settings)

    with pytest.raises(OrderInProgress) as info:
        initiate_purchase(db, gateway_client, buyer, game.slug, "QRIS", settings)
    assert info.value.order_id == first.order_id


def test_checkout_endpoint(client, make_user, make_game, auth_headers):
    buyer = make_user(name="Buyer")
    game = make_game(slug="pixel-quest", price=30000)

    response = client.get("/payment/buy/pixel-quest", headers=auth_headers(buyer))

    assert response.status_code == 200
    body = response.json()
    assert body["price"] == 30000
    assert body["already_owned"] is False
    assert "QRIS" in body["payment_methods"]


def test_checkout_endpoint_flags_owner(client, make_user, make_game, auth_headers):
    uploader = make_user(name="Uploader")
    make_game(slug="pixel-quest", owner=uploader)
    response = client.get("/payment/buy/pixel-quest", headers=auth_headers(uploader))
    assert response.json()["already_owned"] is True


def test_checkout_endpoint_errors(client, make_user, make_game, auth_headers):
    buyer = make_user(name="Buyer")
    make_game(slug="freebie", price=0, price_type="free")
    assert client.get("/payment/buy/freebie", headers=auth_headers(buyer)).status_code == 400
    assert client.get("/payment/buy/missing", headers=auth_headers(buyer)).status_code == 404
    assert client.get("/payment/buy/freebie").status_code == 401


def test_process_endpoint(client, make_user, make_game, auth_headers):
    buyer = make_user(name="Buyer")
    make_game(slug="pixel-quest")

    response = client.post(
        "/payment/process",
        json={"game_slug": "pixel-quest", "payment_method": "VIRTUAL_ACCOUNT"},
        headers=auth_headers(buyer),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["redirect_url"] == f"/payment/{body['order_id']}/invoice"

    invoice = client.get(body["redirect_url"], headers=auth_headers(buyer))
    assert invoice.status_code == 200
    assert invoice.json()["status"] == "waiting"
    assert invoice.json()["payment_method"] == "VIRTUAL_ACCOUNT"


def test_process_endpoint_gateway_failure(client, db, make_user, make_game, auth_headers, fake_gateway):
    buyer = make_user(name="Buyer")
    make_game(slug="pixel-quest")
    fake_gateway.checkout_status = 401
    fake_gateway.checkout_body = {"error": {"message": "Invalid Client-Id"}}

    response = client.post(
        "/payment/process",
        json={"game_slug": "pixel-quest", "payment_method": "QRIS"},
        headers=auth_headers(buyer),
    )

    assert response.status_code == 502
    assert response.json()["detail"]["error"] == "Failed to process payment"
    assert db.query(Transaction).count() == 0


def test_invoice_is_owner_only(client, make_user, make_game, auth_headers):
    buyer = make_user(name="Buyer")
    make_game(slug="pixel-quest")
    order_id = client.post(
        "/payment/process",
        json={"game_slug": "pixel-quest", "payment_method": "QRIS"},
        headers=auth_headers(buyer),
    ).json()["order_id"]

    intruder = make_user(name="Intruder")
    assert client.get(f"/payment/{order_id}/invoice", headers=auth_headers(intruder)).status_code == 403
    assert client.get("/payment/ORDER-NOPE/invoice", headers=auth_headers(buyer)).status_code == 404


def test_history_endpoint(client, make_user, make_game, auth_headers):
    buyer = make_user(name="Buyer")
    make_game(slug="pixel-quest")
    make_game(slug="neon-drift")
    for slug in ("pixel-quest", "neon-drift"):
        client.post(
            "/payment/process",
            json={"game_slug": slug, "payment_method": "QRIS"},
            headers=auth_headers(buyer),
        )

    response = client.get("/payment/history", headers=auth_headers(buyer))

    assert response.status_code == 200
    assert len(response.json()) == 2


def test_numeric_slug_is_not_read_as_an_id(db, make_user, make_game, gateway_client, settings):
    alpha = make_game(slug="alpha", price=1000)
    numbered = make_game(slug=str(alpha.id), title="Twenty Forty Eight", price=90000)
    assert numbered.id != alpha.id

    transaction = initiate_purchase(db, gateway_client, make_user(name="Buyer"), str(alpha.id), "QRIS", settings)

    assert transaction.game_id == numbered.id
    assert transaction.amount == 90000


def test_id_alone_does_not_resolve_a_game(db, make_user, make_game, gateway_client, settings):
    game = make_game(slug="pixel-quest")
    with pytest.raises(GameNotFound):
        initiate_purchase(db, gateway_client, make_user(), str(game.id), "QRIS", settings)
