"""
Central view-permission policy.

Every read-sensitive query goes through can_view. Mutations use their own
custodian/administrator guards in registry.py and never consult this module.
"""

from __future__ import annotations

from .store import AccessMatrix, RecordStore


def can_view(
    records: RecordStore,
    grants: AccessMatrix,
    manuscript_id: int,
    requester: str,
    administrator: str,
) -> bool:
    """
    Effective view permission for requester on a manuscript.

    Any of the following grants access:
    - requester is the record's custodian (implicit owner access)
    - requester is the administrator (implicit, cannot be revoked)
    - the Access Matrix holds an explicit true grant for (manuscript_id, requester)

    A missing record always yields False. Never raises.
    """
    record = records.get(manuscript_id)
    if record is None:
        return False
    is_custodian = requester == record.custodian
    is_administrator = requester == administrator
    return is_custodian or is_administrator or grants.get(manuscript_id, requester)
