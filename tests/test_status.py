import json

import pytest

from ordinal_inscriber.executor import CommandResult
from ordinal_inscriber.status import (
    InscriptionNotFound,
    InscriptionState,
    InscriptionStatusStore,
)

TXID = "e" * 64
INSCRIPTION_ID = "f" * 64 + "i0"


class StubRunner:
    def __init__(self, *results: CommandResult) -> None:
        self.results = list(results)
        self.commands = []

    def run(self, command, timeout=None):
        self.commands.append(command)
        return self.results.pop(0)


def test_create_and_get_return_copies() -> None:
    store = InscriptionStatusStore()

    record = store.create("cat.png", "image/png", satoshi_type="uncommon")
    record.status = InscriptionState.FAILED

    stored = store.get(record.id)
    assert stored.status is InscriptionState.PENDING
    assert stored.as_dict()["satoshiType"] == "uncommon"
    assert "txid" not in stored.as_dict()


def test_create_requires_name_and_type() -> None:
    with pytest.raises(ValueError):
        InscriptionStatusStore().create("", "image/png")


def test_update_ignores_immutable_fields() -> None:
    store = InscriptionStatusStore()
    record = store.create("cat.png", "image/png")

    updated = store.update(
        record.id, {"id": "other", "fileName": "dog.png", "status": "success", "txid": TXID, "bogus": 1}
    )

    assert updated.id == record.id
    assert updated.file_name == "cat.png"
    assert updated.status is InscriptionState.SUCCESS
    assert updated.txid == TXID


def test_update_rejects_unknown_status() -> None:
    store = InscriptionStatusStore()
    record = store.create("cat.png", "image/png")

    with pytest.raises(ValueError):
        store.update(record.id, {"status": "done"})


def test_missing_records_raise_not_found() -> None:
    store = InscriptionStatusStore()

    with pytest.raises(InscriptionNotFound) as excinfo:
        store.get("nope")
    assert str(excinfo.value) == "Inscription not found: nope"
    with pytest.raises(InscriptionNotFound):
        store.delete("nope")


def test_list_and_clear() -> None:
    store = InscriptionStatusStore()
    first = store.create("a.png", "image/png")
    second = store.create("b.png", "image/png")

    assert {record.id for record in store.list()} == {first.id, second.id}
    store.delete(first.id)
    assert [record.id for record in store.list()] == [second.id]
    store.clear()
    assert store.list() == []


def test_process_records_inscription_from_output() -> None:
    store = InscriptionStatusStore()
    record = store.create("cat.png", "image/png")
    runner = StubRunner(CommandResult(False, f"Broadcast {TXID}\ninscription {INSCRIPTION_ID}\n"))

    updated = store.process(record.id, "docker exec ord ord wallet inscribe", runner)

    assert updated.status is InscriptionState.SUCCESS
    assert updated.txid == TXID
    assert updated.ordinal_id == INSCRIPTION_ID
    assert updated.command == "docker exec ord ord wallet inscribe"


def test_process_reads_ord_json_output() -> None:
    store = InscriptionStatusStore()
    record = store.create("cat.png", "image/png")
    output = json.dumps(
        {
            "commit": "c" * 64,
            "inscriptions": [{"id": INSCRIPTION_ID, "location": f"{TXID}:0:0"}],
            "parent": None,
            "reveal": TXID,
            "total_fees": 3210,
        },
        indent=2,
    )

    updated = store.process(record.id, "ord wallet inscribe", StubRunner(CommandResult(False, output)))

    assert updated.status is InscriptionState.SUCCESS
    assert updated.ordinal_id == INSCRIPTION_ID
    assert updated.txid == TXID


def test_process_failure_marks_failed() -> None:
    store = InscriptionStatusStore()
    record = store.create("cat.png", "image/png")

    updated = store.process(record.id, "ord wallet inscribe", StubRunner(CommandResult(True, "wallet locked")))

    assert updated.status is InscriptionState.FAILED
    assert updated.error == "wallet locked"


def test_txid_only_output_stays_pending() -> None:
    store = InscriptionStatusStore()
    record = store.create("cat.png", "image/png")

    updated = store.apply_output(record.id, CommandResult(False, f"commit {TXID}"))

    assert updated.status is InscriptionState.PENDING
    assert updated.txid == TXID


def test_check_confirms_by_txid() -> None:
    store = InscriptionStatusStore()
    record = store.create("cat.png", "image/png")
    store.update(record.id, {"txid": TXID})
    runner = StubRunner(CommandResult(False, '{"confirmations": 2}'))

    updated = store.check(record.id, runner, bitcoin_container="bitcoind")

    assert updated.status is InscriptionState.SUCCESS
    assert runner.commands == [["docker", "exec", "bitcoind", "bitcoin-cli", "gettransaction", TXID]]


def test_check_unconfirmed_transaction_stays_pending() -> None:
    store = InscriptionStatusStore()
    record = store.create("cat.png", "image/png")
    store.update(record.id, {"txid": TXID})

    updated = store.check(
        record.id, StubRunner(CommandResult(False, '{"confirmations": 0}')), bitcoin_container="bitcoind"
    )

    assert updated.status is InscriptionState.PENDING


def test_check_marks_unknown_transaction_failed() -> None:
    store = InscriptionStatusStore()
    record = store.create("cat.png", "image/png")
    store.update(record.id, {"txid": TXID})

    updated = store.check(
        record.id,
        StubRunner(CommandResult(True, "error code: -5\nInvalid or non-wallet transaction id")),
        bitcoin_container="bitcoind",
    )

    assert updated.status is InscriptionState.FAILED


def test_check_skips_finished_or_empty_records() -> None:
    store = InscriptionStatusStore()
    record = store.create("cat.png", "image/png")
    runner = StubRunner()

    assert store.check(record.id, runner, bitcoin_container="bitcoind").status is InscriptionState.PENDING
    store.update(record.id, {"status": "success", "txid": TXID})
    assert store.check(record.id, runner, bitcoin_container="bitcoind").status is InscriptionState.SUCCESS
    assert runner.commands == []
