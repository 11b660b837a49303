"""
Manuscript registry: ownership lifecycle and view-gated analytics.

Every public operation follows the same shape:
1. Load the target record (RecordNotFound if absent)
2. Run guard checks (custodian, administrator, view policy, self-target rules)
3. Apply one atomic mutation to the Record Store and/or Access Matrix
4. Return a result, or raise a typed RegistryError

Operations are serialized by a single re-entrant lock. Mutations run inside a
transaction that journals every touched entry and undoes them on any
exception. Events are signed and schema-checked first, then the state is
committed to disk (when a state_path is configured) and the events are
appended to the ledger (when one is configured). A failed append rolls the
state back and rewrites the previous commit.

Usage:
    registry = ManuscriptRegistry(administrator="admin", height_source=ManualHeight(100))
    mid = registry.register_manuscript("alice", "Codex", storage_size=2048)
    registry.grant_view("alice", mid, "bob")
    registry.get_analytics("bob", mid).tenure
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence, Tuple

from pydantic import BaseModel

from manuscript_ledger import (
    ARCHIVAL_TAG,
    DEFAULT_STORAGE_CAPACITY,
    MAX_SYNOPSIS_LENGTH,
    MAX_TAG_LENGTH,
    MAX_TAGS,
    MAX_TITLE_LENGTH,
    RESTRICTION_TAG,
)

from .authorization import can_view
from .errors import (
    AdminPrivilegeRequired,
    GovernanceRestriction,
    InvalidStorageSize,
    InvalidSynopsis,
    InvalidTag,
    InvalidTitle,
    NoOpTransferRejected,
    NotOwner,
    RecordNotFound,
    RegistryError,
    SelfGrantRejected,
    SystemIntegrityCompromised,
    TagCapacityExceeded,
    ViewingAccessDenied,
)
from .hashing import h_record
from .ledger import HeightSource, ProvenanceLedger
from .models import (
    ArchivalDesignated,
    AuthenticityReport,
    CustodyTransferred,
    ManuscriptAnalytics,
    ManuscriptRecord,
    ManuscriptRegistered,
    ManuscriptRemoved,
    RestrictionEnforced,
    ViewGranted,
    ViewRevoked,
)
from .signing import IdentitySigner
from .store import RegistryState

logger = logging.getLogger(__name__)

# (actor, event) pairs collected during a transaction
PendingEvents = List[Tuple[str, BaseModel]]


class ManuscriptRegistry:
    def __init__(
        self,
        administrator: str,
        height_source: HeightSource,
        storage_capacity: int = DEFAULT_STORAGE_CAPACITY,
        state: Optional[RegistryState] = None,
        state_path: Optional[str] = None,
        ledger: Optional[ProvenanceLedger] = None,
        signer: Optional[IdentitySigner] = None,
    ):
        if not administrator:
            raise ValueError("administrator identity is required")
        if storage_capacity <= 0:
            raise ValueError("storage_capacity must be positive")
        self._administrator = administrator
        self._height_source = height_source
        self._storage_capacity = storage_capacity
        self.state_path = state_path
        if state is None:
            state = RegistryState.load(state_path) if state_path else RegistryState()
        self.state = state
        self.ledger = ledger
        self.signer = signer
        self._lock = threading.RLock()

    @property
    def administrator(self) -> str:
        return self._administrator

    @property
    def storage_capacity(self) -> int:
        return self._storage_capacity

    @property
    def total_storage(self) -> int:
        return self.state.total_storage

    @property
    def manuscript_count(self) -> int:
        return self.state.manuscript_sequence

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[PendingEvents]:
        with self._lock:
            self.state.begin()
            events: PendingEvents = []
            saved = False
            try:
                yield events
                blocks = self._prepare(events)
                if self.state_path:
                    self.state.save(self.state_path)
                    saved = True
                self._publish(blocks)
            except RegistryError as e:
                self._rollback(saved)
                logger.warning(f"{operation} rejected: {e.code} ({e.message})")
                raise
            except Exception as e:
                self._rollback(saved)
                logger.error(f"{operation} failed, state rolled back: {e}")
                raise
            self.state.commit()

    def _rollback(self, saved: bool) -> None:
        self.state.rollback()
        if saved:
            # the commit reached disk before the ledger refused the event
            self.state.save(self.state_path)

    def _prepare(self, events: PendingEvents) -> List[Tuple[dict, dict, Optional[str]]]:
        """Serialize, schema-check and sign every event before anything is written."""
        if self.ledger is None:
            return []
        blocks = []
        for actor, event in events:
            payload = event.model_dump(by_alias=True)
            self.ledger.check_schema(payload)
            if self.signer is not None:
                signer, sig = self.signer.sign(actor, payload)
            else:
                signer, sig = {"id": actor}, None
            blocks.append((payload, signer, sig))
        return blocks

    def _publish(self, blocks: List[Tuple[dict, dict, Optional[str]]]) -> None:
        for payload, signer, sig in blocks:
            self.ledger.append(payload, signer=signer, sig_b64=sig)

    def _current_height(self) -> int:
        return int(self._height_source())

    def _require_record(self, manuscript_id: int) -> ManuscriptRecord:
        record = self.state.records.checkout(manuscript_id)
        if record is None:
            raise RecordNotFound(f"Manuscript {manuscript_id} not found", manuscript_id=manuscript_id)
        return record

    def _require_custodian(self, record: ManuscriptRecord, caller: str) -> None:
        if caller != record.custodian:
            raise NotOwner(
                f"{caller} is not the custodian of manuscript {record.manuscript_id}",
                manuscript_id=record.manuscript_id,
            )

    def _require_view(self, manuscript_id: int, caller: str) -> ManuscriptRecord:
        record = self._require_record(manuscript_id)
        if not self.can_view(caller, manuscript_id):
            raise ViewingAccessDenied(
                f"{caller} may not view manuscript {manuscript_id}",
                manuscript_id=manuscript_id,
            )
        return record

    def _tenure(self, record: ManuscriptRecord, current_height: int) -> int:
        tenure = current_height - record.registration_height
        if tenure < 0:
            raise SystemIntegrityCompromised(
                f"Current height {current_height} precedes registration height "
                f"{record.registration_height} of manuscript {record.manuscript_id}",
                manuscript_id=record.manuscript_id,
            )
        return tenure

    # ------------------------------------------------------------------
    # registration
    # ------------------------------------------------------------------

    def register_manuscript(
        self,
        caller: str,
        title: str,
        storage_size: int,
        synopsis: str = "",
        tags: Sequence[str] = (),
    ) -> int:
        """Validate and register a new manuscript with caller as custodian. Returns its id."""
        if not title or len(title) > MAX_TITLE_LENGTH:
            raise InvalidTitle(f"Title must be 1-{MAX_TITLE_LENGTH} characters")
        if len(synopsis) > MAX_SYNOPSIS_LENGTH:
            raise InvalidSynopsis(f"Synopsis exceeds {MAX_SYNOPSIS_LENGTH} characters")
        if len(tags) > MAX_TAGS:
            raise TagCapacityExceeded(f"At most {MAX_TAGS} classification tags are allowed")
        for tag in tags:
            if not tag or len(tag) > MAX_TAG_LENGTH:
                raise InvalidTag(f"Tag {tag!r} must be 1-{MAX_TAG_LENGTH} characters")
        if storage_size < 0 or storage_size > self._storage_capacity:
            raise InvalidStorageSize(
                f"Storage size {storage_size} outside 0-{self._storage_capacity} bytes"
            )

        with self._transaction("register_manuscript") as events:
            manuscript_id = self.state.manuscript_sequence + 1
            record = ManuscriptRecord(
                manuscript_id=manuscript_id,
                title=title,
                custodian=caller,
                storage_size=storage_size,
                registration_height=self._current_height(),
                synopsis=synopsis,
                classification_tags=list(tags),
            )
            self.state.records.put(manuscript_id, record)
            self.state.manuscript_sequence = manuscript_id
            self.state.total_storage += storage_size
            events.append((caller, ManuscriptRegistered(
                manuscript_id=manuscript_id,
                custodian=caller,
                record_hash=h_record(record.model_dump()),
                storage_size=storage_size,
                registration_height=record.registration_height,
            )))

        logger.info(f"Manuscript {manuscript_id} registered by {caller} ({storage_size} bytes)")
        return manuscript_id

    # ------------------------------------------------------------------
    # ownership / lifecycle
    # ------------------------------------------------------------------

    def grant_view(self, caller: str, manuscript_id: int, recipient: str) -> None:
        with self._transaction("grant_view") as events:
            record = self._require_record(manuscript_id)
            self._require_custodian(record, caller)
            if recipient == caller:
                raise SelfGrantRejected(
                    "Custodian cannot grant view access to itself", manuscript_id=manuscript_id
                )
            self.state.grants.set(manuscript_id, recipient, True)
            events.append((caller, ViewGranted(
                manuscript_id=manuscript_id, custodian=caller, viewer=recipient
            )))
        logger.info(f"View access on {manuscript_id} granted to {recipient}")

    def revoke_view(self, caller: str, manuscript_id: int, target: str) -> None:
        with self._transaction("revoke_view") as events:
            record = self._require_record(manuscript_id)
            self._require_custodian(record, caller)
            if target == caller:
                raise GovernanceRestriction(
                    "Custodian access is implicit and cannot be revoked", manuscript_id=manuscript_id
                )
            if target == self._administrator:
                raise GovernanceRestriction(
                    "Administrator access is implicit and cannot be revoked", manuscript_id=manuscript_id
                )
            self.state.grants.delete(manuscript_id, target)
            events.append((caller, ViewRevoked(
                manuscript_id=manuscript_id, custodian=caller, viewer=target
            )))
        logger.info(f"View access on {manuscript_id} revoked from {target}")

    def transfer_custodianship(self, caller: str, manuscript_id: int, new_custodian: str) -> None:
        """
        Hand the record to new_custodian.

        The new custodian receives a durable explicit grant (it survives any
        later transfer away from them); the previous custodian's explicit grant
        is removed, so their further access depends on the new custodian.
        """
        with self._transaction("transfer_custodianship") as events:
            record = self._require_record(manuscript_id)
            self._require_custodian(record, caller)
            previous = record.custodian
            if new_custodian == previous:
                raise NoOpTransferRejected(
                    f"Manuscript {manuscript_id} is already held by {previous}",
                    manuscript_id=manuscript_id,
                )
            record.custodian = new_custodian
            self.state.grants.set(manuscript_id, new_custodian, True)
            self.state.grants.delete(manuscript_id, previous)
            events.append((caller, CustodyTransferred(
                manuscript_id=manuscript_id,
                previous_custodian=previous,
                new_custodian=new_custodian,
            )))
        logger.info(f"Custody of {manuscript_id} transferred {previous} -> {new_custodian}")

    def enforce_administrative_restriction(self, caller: str, manuscript_id: int) -> None:
        with self._transaction("enforce_administrative_restriction") as events:
            record = self._require_record(manuscript_id)
            if caller != self._administrator and caller != record.custodian:
                raise AdminPrivilegeRequired(
                    f"{caller} is neither administrator nor custodian of manuscript {manuscript_id}",
                    manuscript_id=manuscript_id,
                )
            record.append_tag(RESTRICTION_TAG)
            events.append((caller, RestrictionEnforced(
                manuscript_id=manuscript_id, enforced_by=caller, tag=RESTRICTION_TAG
            )))
        logger.info(f"Administrative restriction applied to {manuscript_id} by {caller}")

    def designate_archival_status(self, caller: str, manuscript_id: int) -> None:
        with self._transaction("designate_archival_status") as events:
            record = self._require_record(manuscript_id)
            self._require_custodian(record, caller)
            record.append_tag(ARCHIVAL_TAG)
            events.append((caller, ArchivalDesignated(
                manuscript_id=manuscript_id, custodian=caller, tag=ARCHIVAL_TAG
            )))
        logger.info(f"Manuscript {manuscript_id} designated archival")

    def permanently_remove(self, caller: str, manuscript_id: int, reason: Optional[str] = None) -> int:
        """
        Erase the record and release its bytes from total storage.

        Explicit grants for the id are left in place; they are unreachable
        because every lookup fails on the missing record first, and ids are
        never reissued. Returns the number of bytes released.
        """
        with self._transaction("permanently_remove") as events:
            record = self._require_record(manuscript_id)
            self._require_custodian(record, caller)
            if self.state.total_storage < record.storage_size:
                raise SystemIntegrityCompromised(
                    f"Total storage {self.state.total_storage} is below the "
                    f"{record.storage_size} bytes held by manuscript {manuscript_id}",
                    manuscript_id=manuscript_id,
                )
            record_hash = h_record(record.model_dump())
            self.state.records.delete(manuscript_id)
            self.state.total_storage -= record.storage_size
            events.append((caller, ManuscriptRemoved(
                manuscript_id=manuscript_id,
                custodian=caller,
                record_hash=record_hash,
                released_bytes=record.storage_size,
                reason=reason,
            )))
        logger.info(f"Manuscript {manuscript_id} permanently removed ({record.storage_size} bytes released)")
        return record.storage_size

    # ------------------------------------------------------------------
    # read-only queries
    # ------------------------------------------------------------------

    def can_view(self, caller: str, manuscript_id: int) -> bool:
        with self._lock:
            return can_view(
                self.state.records, self.state.grants, manuscript_id, caller, self._administrator
            )

    def has_explicit_grant(self, manuscript_id: int, viewer: str) -> bool:
        with self._lock:
            return self.state.grants.get(manuscript_id, viewer)

    def get_manuscript(self, caller: str, manuscript_id: int) -> ManuscriptRecord:
        with self._lock:
            return self._require_view(manuscript_id, caller).model_copy(deep=True)

    def get_analytics(self, caller: str, manuscript_id: int) -> ManuscriptAnalytics:
        with self._lock:
            record = self._require_view(manuscript_id, caller)
            current = self._current_height()
            return ManuscriptAnalytics(
                manuscript_id=manuscript_id,
                tenure=self._tenure(record, current),
                storage_size=record.storage_size,
                tag_count=len(record.classification_tags),
                registration_height=record.registration_height,
                current_height=current,
                storage_ratio=record.storage_size * 100 // self._storage_capacity,
            )

    def verify_authenticity(
        self, caller: str, manuscript_id: int, claimed_custodian: str
    ) -> AuthenticityReport:
        """A mismatch is a normal result (authentic=False), never an error."""
        with self._lock:
            record = self._require_view(manuscript_id, caller)
            current = self._current_height()
            return AuthenticityReport(
                manuscript_id=manuscript_id,
                claimed_custodian=claimed_custodian,
                authentic=claimed_custodian == record.custodian,
                tenure=self._tenure(record, current),
                current_height=current,
            )
