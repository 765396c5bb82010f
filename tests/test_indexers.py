import pytest
import requests

from ordinal_inscriber.commands import CommandValidationError
from ordinal_inscriber.indexers import (
    GeniidataClient,
    IndexerError,
    OrdApiClient,
    check_bitmap,
    check_sns_name,
    describe_token,
    sns_fee_quote,
)


class StubResponse:
    def __init__(self, payload=None, text: str = "", status_code: int = 200) -> None:
        self.payload = payload
        self.text = text
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if self.payload is None:
            raise ValueError("no json")
        return self.payload


class StubSession:
    """Maps URL paths to canned responses; unknown paths raise ConnectionError."""

    def __init__(self, routes=None) -> None:
        self.routes = routes or {}
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        path = url.split("://", 1)[1].split("/", 1)[1]
        self.calls.append(("/" + path, params, headers))
        response = self.routes.get("/" + path)
        if response is None:
            raise requests.ConnectionError("offline")
        return response


def _ok(data):
    return StubResponse({"code": 0, "message": "success", "data": data})


def test_geniidata_sends_api_key_and_unwraps_envelope() -> None:
    session = StubSession({"/ordinals/brc20/tokens": _ok({"list": [{"ticker": "ordi", "max": "21000000"}]})})
    client = GeniidataClient(session, api_key="secret")

    token = client.brc20_token("ordi")

    assert token == {"ticker": "ordi", "max": "21000000"}
    path, params, headers = session.calls[0]
    assert params == {"ticker": "ORDI"}
    assert headers["api-key"] == "secret"


def test_geniidata_error_code_raises() -> None:
    session = StubSession({"/ordinals/status": StubResponse({"code": 1001, "message": "bad key"})})

    with pytest.raises(IndexerError):
        GeniidataClient(session).block_height()


def test_geniidata_validates_ticker_before_request() -> None:
    session = StubSession()

    with pytest.raises(CommandValidationError):
        GeniidataClient(session).brc20_token("toolong")
    assert session.calls == []


def test_ord_api_block_height() -> None:
    session = StubSession({"/blockheight": StubResponse(text="840000\n")})

    assert OrdApiClient("http://ord:80/", session).block_height() == 840000

    with pytest.raises(IndexerError):
        OrdApiClient("http://ord:80", StubSession({"/blockheight": StubResponse(text="nope")})).block_height()


def test_describe_token_reports_minting_complete() -> None:
    record = {"ticker": "ordi", "max": "100", "limit": "10", "totalMinted": "100", "decimals": 0}

    described = describe_token(record)

    assert described["mintingComplete"] is True
    assert described["maxMintPerInscription"] == "10"
    assert described["decimals"] == 0
    assert describe_token({"max": "1"})["decimals"] == 18


def test_bitmap_beyond_chain_tip_is_unavailable() -> None:
    session = StubSession({"/ordinals/status": _ok({"blockHeight": 800000})})

    result = check_bitmap(900000, GeniidataClient(session))

    assert not result.is_available
    assert result.source == "chain"
    assert "not been mined" in result.as_dict()["warning"]


def test_bitmap_already_inscribed() -> None:
    session = StubSession(
        {
            "/ordinals/status": _ok({"blockHeight": 800000}),
            "/ordinals/bitmaps/content": _ok({"list": [{"inscriptionId": "abc"}, {"inscriptionId": "def"}]}),
        }
    )

    result = check_bitmap(42, GeniidataClient(session)).as_dict()

    assert result["isAvailable"] is False
    assert result["source"] == "geniidata_verified"
    assert result["inscriptionDetails"] == {"count": 2, "firstInscription": {"inscriptionId": "abc"}}
    assert result["format"] == "42.bitmap"


def test_bitmap_uses_ord_height_when_geniidata_is_down() -> None:
    ord_api = OrdApiClient("http://ord:80", StubSession({"/blockheight": StubResponse(text="100")}))

    result = check_bitmap(42, GeniidataClient(StubSession()), ord_api)

    assert result.is_available
    assert result.latest_block == 100
    assert result.source == "unverified"
    assert result.warning


def test_free_bitmap_is_available() -> None:
    session = StubSession(
        {
            "/ordinals/status": _ok({"blockHeight": 800000}),
            "/ordinals/bitmaps/content": _ok({"list": []}),
        }
    )

    result = check_bitmap(7, GeniidataClient(session))

    assert result.is_available
    assert result.source == "geniidata"


def test_sns_name_taken_and_free() -> None:
    taken = StubSession({"/ordinals/sns/names": _ok({"list": [{"address": "bc1qowner", "inscriptionId": "i1"}]})})
    free = StubSession({"/ordinals/sns/names": _ok({"list": []})})

    assert check_sns_name("Alice.sats", GeniidataClient(taken)) == {
        "name": "alice",
        "isAvailable": False,
        "owner": "bc1qowner",
        "address": "bc1qowner",
        "inscription_id": "i1",
    }
    assert check_sns_name("alice", GeniidataClient(free)) == {"name": "alice", "isAvailable": True}


def test_sns_name_heuristic_when_lookup_fails() -> None:
    client = GeniidataClient(StubSession())

    assert check_sns_name("abc", client)["isAvailable"] is False
    assert check_sns_name("satoshi", client)["isAvailable"] is False
    result = check_sns_name("longname", client)
    assert result["isAvailable"] is True
    assert result["fallback"] is True


def test_sns_fee_quote_tiers() -> None:
    quote = sns_fee_quote("economy")

    assert quote["total"] == 10_000 + 1000 + 500 + 2000
    assert quote["usdValues"]["totalUSD"] == "6.75"
    assert sns_fee_quote("custom", 5000)["networkFee"] == 5000
    with pytest.raises(ValueError):
        sns_fee_quote("custom")
    with pytest.raises(ValueError):
        sns_fee_quote("turbo")
