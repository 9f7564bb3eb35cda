import json

import pytest

from hashledger.cli import main
from hashledger.config import NodeConfig
from hashledger.node import LedgerNode


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("HASHLEDGER_DB_PATH", "HASHLEDGER_WALLET", "HASHLEDGER_TOPIC"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def ledger_db(tmp_path, other_wallet):
    path = tmp_path / "ledger.db"
    node = LedgerNode(NodeConfig(db_path=str(path)))
    for amount in range(3):
        node.create_transaction(other_wallet.public_key, amount)
        node.seal()
    node.blockchain.store.close()
    return path


def test_keygen_creates_then_reuses(tmp_path, capsys):
    path = tmp_path / "wallet.json"
    assert main(["keygen", "--wallet", str(path)]) == 0
    public_key = json.loads(path.read_text())['public_key']
    assert "Created" in capsys.readouterr().out

    assert main(["keygen", "--wallet", str(path)]) == 0
    out = capsys.readouterr().out
    assert "Loaded" in out
    assert public_key in out


def test_status_and_verify(ledger_db, capsys):
    assert main(["status", "--db", str(ledger_db)]) == 0
    assert "Height: 3" in capsys.readouterr().out
    assert main(["verify", "--db", str(ledger_db)]) == 0


def test_missing_database_is_an_error(tmp_path, capsys):
    assert main(["verify", "--db", str(tmp_path / "absent.db")]) == 1
    assert "Error" in capsys.readouterr().out


def test_no_command_prints_help():
    assert main([]) == 2


def test_simulate_converges(tmp_path, capsys):
    argv = ["simulate", "--nodes", "3", "--rounds", "3", "--transactions", "2",
            "--seed", "7", "--db-dir", str(tmp_path)]
    assert main(argv) == 0
    assert "All nodes converged" in capsys.readouterr().out
    assert len(list(tmp_path.glob("node-*.db"))) == 3
    assert main(["verify", "--db", str(tmp_path / "node-1.db")]) == 0
