"""
Tests for the provenance ledger and height sources.

Coverage:
- Block chaining and heights
- Signed and unsigned blocks
- Tamper detection
- Schema downgrade rejection
- Registry publishes one event per committed mutation
- A mutation the ledger refuses is rolled back, on disk too
"""

import json

import pytest

from manuscript_ledger.hashing import h_block, h_genesis, h_record
from manuscript_ledger.errors import NotOwner
from manuscript_ledger.ledger import ManualHeight, ProvenanceLedger, SchemaDowngradeError
from manuscript_ledger.registry import ManuscriptRegistry
from manuscript_ledger.signing import IdentitySigner, b64e, gen_ed25519, sign_payload
from manuscript_ledger.store import RegistryState

ADMIN = "admin"


@pytest.fixture
def ledger(tmp_path):
    return ProvenanceLedger(str(tmp_path / "ledger.jsonl"))


@pytest.fixture
def identities():
    priv, pub = gen_ed25519()
    return {"alice": {"ed25519_priv_pem_b64": b64e(priv), "ed25519_pub_pem_b64": b64e(pub)}}


class TestHashing:

    def test_domain_separation(self):
        obj = {"manuscript_id": 1}
        assert h_block(obj) != h_record(obj)

    def test_genesis_is_stable(self):
        assert h_genesis() == h_block({"genesis": True})


class TestProvenanceLedger:

    def test_empty_ledger(self, ledger):
        assert ledger.height == 0
        assert ledger.tip_hash() == h_genesis()
        assert ledger.verify() is True

    def test_file_created_on_first_append(self, tmp_path):
        ledger = ProvenanceLedger(str(tmp_path / "nested" / "ledger.jsonl"))
        assert ledger.height == 0
        assert not (tmp_path / "nested").exists()
        ledger.append({"kind": "Test"}, signer={"id": "x"})
        assert (tmp_path / "nested" / "ledger.jsonl").exists()

    def test_blocks_chain_and_count_height(self, ledger):
        first = ledger.append({"kind": "Test", "n": 1}, signer={"id": "alice"})
        second = ledger.append({"kind": "Test", "n": 2}, signer={"id": "alice"})

        assert first["height"] == 1
        assert second["height"] == 2
        assert second["prev_hash"] == first["block_hash"]
        assert ledger.height == 2
        assert ledger.current_height() == 2
        assert ledger.verify() is True

    def test_signed_block_verifies(self, ledger, identities):
        payload = {"kind": "Test", "n": 1}
        signer, sig = IdentitySigner(identities).sign("alice", payload)
        ledger.append(payload, signer=signer, sig_b64=sig)
        assert ledger.blocks[0]["sig"] == sig
        assert ledger.verify() is True

    def test_unknown_identity_produces_unsigned_block(self, identities):
        signer, sig = IdentitySigner(identities).sign("bob", {"kind": "Test"})
        assert signer == {"id": "bob"}
        assert sig is None

    def test_forged_signature_fails(self, ledger, identities):
        other_priv, _ = gen_ed25519()
        payload = {"kind": "Test", "n": 1}
        signer = {"id": "alice", "ed25519_pub_pem_b64": identities["alice"]["ed25519_pub_pem_b64"]}
        ledger.append(payload, signer=signer, sig_b64=sign_payload(other_priv, payload))
        assert ledger.verify() is False

    def test_payload_tamper_detected(self, ledger):
        ledger.append({"kind": "Test", "n": 1}, signer={"id": "alice"})
        ledger.append({"kind": "Test", "n": 2}, signer={"id": "alice"})

        with open(ledger.path, "r", encoding="utf-8") as f:
            lines = f.read().splitlines()
        block = json.loads(lines[0])
        block["payload"]["n"] = 99
        lines[0] = json.dumps(block, sort_keys=True, separators=(",", ":"))
        with open(ledger.path, "w", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n")

        assert ledger.verify() is False

    def test_schema_downgrade_rejected(self, ledger):
        with pytest.raises(SchemaDowngradeError):
            ledger.append({"kind": "Test", "schema": "manuscript-ledger/v0"}, signer={"id": "x"})
        assert ledger.height == 0

    def test_find_by(self, ledger):
        ledger.append({"kind": "A", "manuscript_id": 1}, signer={"id": "x"})
        ledger.append({"kind": "B", "manuscript_id": 2}, signer={"id": "x"})
        ledger.append({"kind": "C", "manuscript_id": 1}, signer={"id": "x"})
        assert [b["payload"]["kind"] for b in ledger.find_by("manuscript_id", 1)] == ["A", "C"]
        assert len(ledger.all_payloads()) == 3


class TestManualHeight:

    def test_advance_and_set(self):
        h = ManualHeight(10)
        assert h() == 10
        assert h.advance(5) == 15
        h.set(20)
        assert h() == 20

    def test_never_decreases(self):
        h = ManualHeight(10)
        with pytest.raises(ValueError):
            h.set(9)
        with pytest.raises(ValueError):
            h.advance(-1)
        with pytest.raises(ValueError):
            ManualHeight(-1)


class TestRegistryProvenance:

    def test_each_mutation_appends_one_event(self, ledger, identities):
        registry = ManuscriptRegistry(
            administrator=ADMIN,
            height_source=ledger.current_height,
            ledger=ledger,
            signer=IdentitySigner(identities),
        )
        mid = registry.register_manuscript("alice", "Codex", storage_size=12)
        registry.grant_view("alice", mid, "bob")
        registry.revoke_view("alice", mid, "bob")
        registry.enforce_administrative_restriction(ADMIN, mid)
        registry.designate_archival_status("alice", mid)
        registry.transfer_custodianship("alice", mid, "bob")
        registry.permanently_remove("bob", mid, reason="duplicate")

        kinds = [p["kind"] for p in ledger.all_payloads()]
        assert kinds == [
            "ManuscriptRegistered",
            "ViewGranted",
            "ViewRevoked",
            "RestrictionEnforced",
            "ArchivalDesignated",
            "CustodyTransferred",
            "ManuscriptRemoved",
        ]
        assert ledger.verify() is True
        # alice has keys, admin and bob do not
        signed = [bool(b["sig"]) for b in ledger.blocks]
        assert signed == [True, True, True, False, True, True, False]
        assert ledger.all_payloads()[-1]["reason"] == "duplicate"

    def test_registration_height_follows_ledger(self, ledger):
        registry = ManuscriptRegistry(administrator=ADMIN, height_source=ledger.current_height, ledger=ledger)
        first = registry.register_manuscript("alice", "One", storage_size=1)
        second = registry.register_manuscript("alice", "Two", storage_size=1)

        assert registry.get_manuscript("alice", first).registration_height == 0
        assert registry.get_manuscript("alice", second).registration_height == 1
        assert registry.get_analytics("alice", first).tenure == 2

    def test_rejected_mutation_appends_nothing(self, ledger):
        registry = ManuscriptRegistry(administrator=ADMIN, height_source=ManualHeight(), ledger=ledger)
        mid = registry.register_manuscript("alice", "Codex", storage_size=1)
        with pytest.raises(NotOwner):
            registry.designate_archival_status("bob", mid)
        assert ledger.height == 1

    def test_failed_append_rolls_back_commit(self, tmp_path, ledger, monkeypatch):
        state_path = str(tmp_path / "registry.json")
        registry = ManuscriptRegistry(
            administrator=ADMIN, height_source=ledger.current_height, state_path=state_path, ledger=ledger
        )
        mid = registry.register_manuscript("alice", "Codex", storage_size=1)

        def broken_append(payload, signer, sig_b64=None):
            raise OSError("ledger unavailable")

        monkeypatch.setattr(ledger, "append", broken_append)
        with pytest.raises(OSError):
            registry.grant_view("alice", mid, "bob")

        assert registry.has_explicit_grant(mid, "bob") is False
        on_disk = RegistryState.load(state_path)
        assert on_disk.grants.get(mid, "bob") is False
        assert ledger.height == 1

    def test_refused_schema_writes_nothing(self, tmp_path, ledger, monkeypatch):
        state_path = tmp_path / "registry.json"
        registry = ManuscriptRegistry(
            administrator=ADMIN, height_source=ledger.current_height, state_path=str(state_path), ledger=ledger
        )
        mid = registry.register_manuscript("alice", "Codex", storage_size=1)
        committed = state_path.read_text()

        def refuse(payload):
            raise SchemaDowngradeError("refused")

        monkeypatch.setattr(ledger, "check_schema", refuse)
        with pytest.raises(SchemaDowngradeError):
            registry.transfer_custodianship("alice", mid, "bob")

        assert state_path.read_text() == committed
        assert registry.get_manuscript("alice", mid).custodian == "alice"
        assert ledger.height == 1
