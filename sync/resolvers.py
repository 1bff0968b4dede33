"""
sync.resolvers
==============

Conflict resolution for replayed offline writes.

The two resolvers deliberately follow different rules:

- Charges are append-only facts. Reconciliation is existence-based: the
  server copy of a charge always wins on an idempotency-key collision and
  the client only contributes charges the server has never seen.
- Room status is a single mutable field. The newer write wins (ties go to
  the server), except that a server-side `maintenance` status is never
  overwritten by an offline write.

Do not "unify" them.
"""

from __future__ import annotations

from typing import Dict, List, Sequence

from .models import CLIENT_WINS, SERVER_WINS, Charge, ConflictResolution, StatusConflict

SAFETY_STATUSES = frozenset({"maintenance"})


def resolve_folio_charges(server_charges: Sequence[Charge], client_charges: Sequence[Charge]) -> List[Charge]:
    """Merge server and client charge lists, one charge per idempotency key.

    Output is server charges in their original order followed by the client
    charges whose key the server did not have. Amounts are never summed or
    adjusted.
    """
    by_key: Dict[str, Charge] = {}
    for charge in server_charges:
        by_key[charge.idempotency_key] = charge
    for charge in client_charges:
        if charge.idempotency_key not in by_key:
            by_key[charge.idempotency_key] = charge
    return list(by_key.values())


def resolve_room_status_conflict(conflict: StatusConflict) -> ConflictResolution:
    server = conflict.server_data
    client = conflict.client_data

    if server.status in SAFETY_STATUSES:
        return ConflictResolution(
            final_data=server,
            resolution=SERVER_WINS,
            reason="Maintenance status has priority for safety",
        )

    # >= : equal timestamps favour the server.
    if server.updated_at >= client.updated_at:
        return ConflictResolution(
            final_data=server,
            resolution=SERVER_WINS,
            reason="Server data is newer or equal",
        )
    return ConflictResolution(
        final_data=client,
        resolution=CLIENT_WINS,
        reason="Client data is newer",
    )
