from __future__ import annotations

import argparse
import json
import logging
import os
from typing import Any, Optional, Sequence, cast

from manuscript_ledger import __schema__, __version__
from manuscript_ledger.config import (
    Deployment,
    DeploymentExistsError,
    Settings,
    load_deployment,
    save_deployment,
    state_paths,
)
from manuscript_ledger.errors import RegistryError
from manuscript_ledger.ledger import ProvenanceLedger
from manuscript_ledger.registry import ManuscriptRegistry
from manuscript_ledger.signing import IdentitySigner, b64e, gen_ed25519

logger = logging.getLogger("manuscript_ledger.cli")


def load_identities(path: str) -> dict[str, Any]:
    if os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            return cast(dict[str, Any], json.load(f))
    return {}

def save_identities(path: str, ids: dict):
    with open(path, "w", encoding="utf-8") as f:
        json.dump(ids, f, indent=2, sort_keys=True)

def open_registry(out: str) -> tuple[ManuscriptRegistry, ProvenanceLedger]:
    """Assemble a registry over the state directory (deployment must exist)."""
    st = state_paths(out)
    try:
        deployment = load_deployment(st["deployment"])
    except FileNotFoundError as e:
        raise SystemExit(f"❌ {e}")
    ledger = ProvenanceLedger(st["ledger"])
    registry = ManuscriptRegistry(
        administrator=deployment.administrator,
        height_source=ledger.current_height,
        storage_capacity=deployment.storage_capacity,
        state_path=st["state"],
        ledger=ledger,
        signer=IdentitySigner(load_identities(st["identities"])),
    )
    return registry, ledger

def cmd_init_identities(args):
    st = state_paths(args.out)
    ids = load_identities(st["identities"])

    if args.who in ids:
        print(f"⚠️  Identity already exists: {args.who}")
        return

    ed_priv, ed_pub = gen_ed25519()
    ids[args.who] = {
        "ed25519_priv_pem_b64": b64e(ed_priv),
        "ed25519_pub_pem_b64": b64e(ed_pub),
    }
    save_identities(st["identities"], ids)
    print("✅ Identity created")
    print(f"   who: {args.who}")

def cmd_deploy(args):
    st = state_paths(args.out)
    deployment = Deployment(administrator=args.admin, storage_capacity=args.capacity)
    try:
        save_deployment(st["deployment"], deployment)
    except DeploymentExistsError as e:
        raise SystemExit(f"❌ {e}. The administrator identity is immutable.")
    print("✅ Registry deployed")
    print(f"   administrator : {deployment.administrator}")
    print(f"   capacity      : {deployment.storage_capacity} bytes")
    print(f"   schema        : {__schema__}")

def cmd_register(args):
    registry, ledger = open_registry(args.out)
    mid = registry.register_manuscript(
        args.actor,
        title=args.title,
        storage_size=args.size,
        synopsis=args.synopsis or "",
        tags=args.tag or [],
    )
    print("✅ Manuscript registered")
    print(f"   manuscript_id : {mid}")
    print(f"   custodian     : {args.actor}")
    print(f"   height        : {ledger.height}")

def cmd_grant(args):
    registry, _ = open_registry(args.out)
    registry.grant_view(args.actor, args.manuscript_id, args.viewer)
    print(f"✅ View access granted on {args.manuscript_id} to {args.viewer}")

def cmd_revoke(args):
    registry, _ = open_registry(args.out)
    registry.revoke_view(args.actor, args.manuscript_id, args.viewer)
    print(f"🛑 View access revoked on {args.manuscript_id} from {args.viewer}")

def cmd_transfer(args):
    registry, _ = open_registry(args.out)
    registry.transfer_custodianship(args.actor, args.manuscript_id, args.to)
    print("🔁 Custodianship transferred")
    print(f"   manuscript_id : {args.manuscript_id}")
    print(f"   from          : {args.actor}")
    print(f"   to            : {args.to}")

def cmd_restrict(args):
    registry, _ = open_registry(args.out)
    registry.enforce_administrative_restriction(args.actor, args.manuscript_id)
    print(f"✅ Administrative restriction applied to {args.manuscript_id}")

def cmd_archive(args):
    registry, _ = open_registry(args.out)
    registry.designate_archival_status(args.actor, args.manuscript_id)
    print(f"✅ Manuscript {args.manuscript_id} designated archival")

def cmd_remove(args):
    registry, _ = open_registry(args.out)

    if not args.force:
        print("\n⚠️  WARNING: PERMANENT REMOVAL")
        print(f"   Manuscript: {args.manuscript_id}")
        print("   This action CANNOT be undone.")
        response = input("\nType 'REMOVE' to confirm: ")
        if response != "REMOVE":
            print("❌ Removal cancelled.")
            return

    released = registry.permanently_remove(args.actor, args.manuscript_id, reason=args.reason)
    print("🔥 Manuscript permanently removed")
    print(f"   manuscript_id  : {args.manuscript_id}")
    print(f"   released bytes : {released}")
    print(f"   total storage  : {registry.total_storage}")

def cmd_analytics(args):
    registry, _ = open_registry(args.out)
    report = registry.get_analytics(args.actor, args.manuscript_id)
    print(json.dumps(report.model_dump(), indent=2, sort_keys=True))

def cmd_verify_authenticity(args):
    registry, _ = open_registry(args.out)
    report = registry.verify_authenticity(args.actor, args.manuscript_id, args.claimed)
    mark = "✅" if report.authentic else "⚠️ "
    print(f"{mark} authentic={report.authentic} (claimed custodian: {report.claimed_custodian})")
    print(f"   tenure         : {report.tenure}")
    print(f"   current height : {report.current_height}")

def cmd_show(args):
    registry, _ = open_registry(args.out)
    record = registry.get_manuscript(args.actor, args.manuscript_id)
    print(json.dumps(record.model_dump(), indent=2, sort_keys=True))

def cmd_history(args):
    st = state_paths(args.out)
    ledger = ProvenanceLedger(st["ledger"])
    blocks = ledger.find_by("manuscript_id", args.manuscript_id)
    print(f"📦 {len(blocks)} provenance events for manuscript {args.manuscript_id}")
    for b in blocks:
        p = b["payload"]
        signed = "signed" if b.get("sig") else "unsigned"
        print(f"   [{b['height']:>5}] {p['kind']:<20} by {b['signer']['id']} ({signed})")

def cmd_verify(args):
    st = state_paths(args.out)
    ledger = ProvenanceLedger(st["ledger"])
    ok = ledger.verify()
    print("✅ Ledger verify (chain + signatures)" if ok else "❌ Ledger verify FAILED")
    if not ok:
        raise SystemExit(1)

def build_parser(settings: Settings) -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="manuscript-ledger")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = p.add_subparsers(dest="cmd", required=True)

    def command(name: str, func, help_text: str, actor: bool = True, manuscript: bool = True):
        c = sub.add_parser(name, help=help_text)
        c.add_argument("--out", default=settings.STATE_DIR, help="State directory")
        if actor:
            c.add_argument("--actor", required=True, help="Invoking identity")
        if manuscript:
            c.add_argument("--manuscript-id", type=int, required=True)
        c.set_defaults(func=func)
        return c

    i = command("init-identities", cmd_init_identities, "Create an Ed25519 identity keypair",
                actor=False, manuscript=False)
    i.add_argument("--who", required=True, help="Identity name")

    d = command("deploy", cmd_deploy, "Fix the administrator identity for this registry",
                actor=False, manuscript=False)
    d.add_argument("--admin", required=True, help="Administrator identity (immutable)")
    d.add_argument("--capacity", type=int, default=settings.STORAGE_CAPACITY,
                   help="Storage capacity ceiling in bytes")

    r = command("register", cmd_register, "Register a manuscript (actor becomes custodian)",
                manuscript=False)
    r.add_argument("--title", required=True)
    r.add_argument("--size", type=int, required=True, help="Storage size in bytes")
    r.add_argument("--synopsis")
    r.add_argument("--tag", action="append", default=[], help="Classification tag (repeatable)")

    g = command("grant", cmd_grant, "Grant explicit view access")
    g.add_argument("--viewer", required=True)

    rv = command("revoke", cmd_revoke, "Revoke explicit view access")
    rv.add_argument("--viewer", required=True)

    t = command("transfer", cmd_transfer, "Transfer custodianship")
    t.add_argument("--to", required=True, help="New custodian identity")

    command("restrict", cmd_restrict, "Apply the administrative restriction tag")
    command("archive", cmd_archive, "Designate archival status")

    rm = command("remove", cmd_remove, "Permanently remove a manuscript")
    rm.add_argument("--reason", help="Removal reason for the provenance trail")
    rm.add_argument("--force", action="store_true", help="Skip confirmation prompt")

    command("analytics", cmd_analytics, "Show tenure and storage analytics")

    va = command("verify-authenticity", cmd_verify_authenticity, "Check a claimed custodian")
    va.add_argument("--claimed", required=True, help="Claimed custodian identity")

    command("show", cmd_show, "Show manuscript metadata")
    command("history", cmd_history, "List provenance events for a manuscript", actor=False)
    command("verify", cmd_verify, "Verify ledger integrity", actor=False, manuscript=False)
    return p

def main(argv: Optional[Sequence[str]] = None) -> None:
    settings = Settings.load()
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args = build_parser(settings).parse_args(argv)
    logger.debug(f"Running {args.cmd} against {args.out}")
    try:
        args.func(args)
    except RegistryError as e:
        raise SystemExit(f"❌ {e.code}: {e.message}")

if __name__ == "__main__":
    main()
