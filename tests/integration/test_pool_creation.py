import base64
from unittest.mock import MagicMock

import pytest
from solders.keypair import Keypair
from solders.signature import Signature
from solders.transaction import Transaction
from spl.token.constants import MINT_LEN

from m33t import chain, crud, pool_creation, schemas
from m33t.errors import UpstreamError, ValidationError

from tests.integration.conftest import USDC_MINT, create_mock_resp


def pool_request(creator: str, **overrides) -> dict:
    body = {
        "userPublicKey": creator,
        "name": "Solana Breakpoint Pass",
        "symbol": "BRKPT",
        "uri": "https://example.com/brkpt.json",
        "eventId": "breakpoint-2025",
    }
    body.update(overrides)
    return body


def decode(encoded: str) -> Transaction:
    return Transaction.from_bytes(base64.b64decode(encoded))


# --- HTTP flow ---

def test_create_transaction_success(api_client, mock_chain, fake_amm):
    """Builds the transaction, records the ledger row, and the row is then found by mint."""
    creator = Keypair().pubkey()
    response = api_client.post("/solana/create-transaction", json=pool_request(str(creator)))

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Pool creation transaction ready. Please sign with your wallet."
    token_data = body["tokenData"]
    assert token_data["creatorAddress"] == str(creator)
    assert token_data["symbol"] == "BRKPT"
    assert token_data["eventId"] == "breakpoint-2025"
    assert isinstance(token_data["id"], int)

    # The AMM gateway was asked to pair the new mint with the stablecoin
    assert len(fake_amm.create_calls) == 1
    create_call = fake_amm.create_calls[0]
    assert str(create_call["token_a_mint"]) == token_data["mintAddress"]
    assert create_call["token_b_mint"] == USDC_MINT
    assert create_call["token_a_amount"] == chain.TOKEN_SUPPLY
    mock_chain.get_minimum_balance_for_rent_exemption.assert_awaited_once_with(MINT_LEN)

    lookup = api_client.get("/tokens", params={"mint": token_data["mintAddress"]})
    assert lookup.status_code == 200
    stored = lookup.json()["token"]
    assert stored["id"] == token_data["id"]
    assert stored["poolAddress"] == token_data["poolAddress"]
    assert stored["positionAddress"] == token_data["positionAddress"]
    assert stored["transactionSignature"] is None


def test_create_transaction_is_partially_signed(api_client):
    """Mint and position keypairs sign; the creator's slot is left for the wallet."""
    creator = Keypair().pubkey()
    body = api_client.post("/solana/create-transaction", json=pool_request(str(creator))).json()
    tx = decode(body["transaction"])
    message = tx.message

    signer_keys = message.account_keys[: message.header.num_required_signatures]
    signatures = dict(zip(signer_keys, tx.signatures))
    assert signer_keys[0] == creator # fee payer
    assert signatures[creator] == Signature.default()

    others = [key for key in signer_keys if key != creator]
    assert len(others) == 2
    assert body["tokenData"]["mintAddress"] in {str(key) for key in others}
    message_bytes = bytes(message)
    for key in others:
        assert signatures[key] != Signature.default()
        assert signatures[key].verify(key, message_bytes)


@pytest.mark.parametrize("missing", ["userPublicKey", "name", "symbol", "uri", "eventId"])
def test_create_transaction_missing_field(api_client, mock_chain, fake_amm, missing):
    body = pool_request(str(Keypair().pubkey()))
    body[missing] = "   " if missing == "name" else None

    response = api_client.post("/solana/create-transaction", json=body)

    assert response.status_code == 400
    assert "All fields are required" in response.json()["error"]
    assert missing in response.json()["error"]
    mock_chain.get_minimum_balance_for_rent_exemption.assert_not_called()
    mock_chain.get_latest_blockhash.assert_not_called()
    assert fake_amm.create_calls == []
    with api_client.app.state.database.session() as db:
        assert crud.get_all_tokens(db) == []


def test_create_transaction_invalid_creator(api_client, mock_chain):
    response = api_client.post("/solana/create-transaction", json=pool_request("not-a-pubkey"))

    assert response.status_code == 400
    assert "Invalid userPublicKey format" in response.json()["error"]
    mock_chain.get_minimum_balance_for_rent_exemption.assert_not_called()


def test_create_transaction_amm_failure_writes_nothing(api_client, fake_amm):
    fake_amm.fail_with = UpstreamError("AMM gateway error (502): pool program unavailable")

    response = api_client.post("/solana/create-transaction", json=pool_request(str(Keypair().pubkey())))

    assert response.status_code == 500
    assert "pool program unavailable" in response.json()["error"]
    with api_client.app.state.database.session() as db:
        assert crud.get_all_tokens(db) == []


def test_create_transaction_rpc_failure(api_client, mock_chain):
    mock_chain.get_latest_blockhash.side_effect = Exception("RPC node unavailable")

    response = api_client.post("/solana/create-transaction", json=pool_request(str(Keypair().pubkey())))

    assert response.status_code == 500
    assert response.json()["error"] == "RPC node unavailable"
    with api_client.app.state.database.session() as db:
        assert crud.get_all_tokens(db) == []


# --- Flow functions ---

@pytest.mark.asyncio
async def test_create_pool_transaction_strips_fields(db_session, mock_chain, fake_amm):
    creator = Keypair().pubkey()
    request = schemas.CreatePoolRequest(
        user_public_key=f" {creator} ",
        name=" Hacker House ",
        symbol=" HH ",
        uri=" https://example.com/hh.json ",
        event_id=" hh-lisbon ",
    )

    result = await pool_creation.create_pool_transaction(mock_chain, fake_amm, db_session, USDC_MINT, request)

    assert result["tokenData"]["name"] == "Hacker House"
    assert result["tokenData"]["eventId"] == "hh-lisbon"
    db_token = crud.get_token_by_mint(db_session, result["tokenData"]["mintAddress"])
    assert db_token.creator_address == str(creator)
    assert db_token.symbol == "HH"


def test_validate_request_reports_all_missing():
    with pytest.raises(ValidationError) as exc_info:
        pool_creation.validate_request(schemas.CreatePoolRequest(name="Only a name"))
    message = str(exc_info.value)
    for field in ("userPublicKey", "symbol", "uri", "eventId"):
        assert field in message


# --- Transaction status relay ---

def test_transaction_status_found(api_client, mock_chain):
    signature = str(Keypair().sign_message(b"tx"))
    status = MagicMock()
    status.to_json.return_value = '{"slot": 312, "confirmations": null, "err": null, "confirmationStatus": "finalized"}'
    mock_chain.get_signature_statuses.return_value = create_mock_resp([status])

    response = api_client.get("/solana/create-transaction", params={"signature": signature})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["signature"] == signature
    assert body["status"]["slot"] == 312
    assert body["status"]["confirmationStatus"] == "finalized"


def test_transaction_status_unknown_signature(api_client, mock_chain):
    mock_chain.get_signature_statuses.return_value = create_mock_resp([None])
    signature = str(Keypair().sign_message(b"tx"))

    response = api_client.get("/solana/create-transaction", params={"signature": signature})

    assert response.status_code == 200
    assert response.json()["status"] is None


def test_transaction_status_requires_signature(api_client, mock_chain):
    assert api_client.get("/solana/create-transaction").status_code == 400
    assert api_client.get("/solana/create-transaction", params={"signature": "xyz"}).status_code == 400
    mock_chain.get_signature_statuses.assert_not_called()


def test_transaction_status_rpc_failure(api_client, mock_chain):
    mock_chain.get_signature_statuses.side_effect = Exception("connection reset")
    signature = str(Keypair().sign_message(b"tx"))

    response = api_client.get("/solana/create-transaction", params={"signature": signature})

    assert response.status_code == 500
    assert response.json()["error"] == "Failed to get transaction status"
