"""Communication ledger.

Append-only: there is no update or delete. Entries come back in insertion
order (timestamp, then an autoincrement sequence for equal timestamps).
"""

from __future__ import annotations

import uuid
from dataclasses import asdict

from sqlalchemy import String, cast, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from leadflow.db.models import LeadCommunication
from leadflow.workflow.clock import Clock
from leadflow.workflow.errors import ValidationError
from leadflow.workflow.types import CommunicationRecord


def _like_escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class CommunicationLedger:
    def __init__(self, session: AsyncSession, clock: Clock) -> None:
        self._session = session
        self._clock = clock

    async def append(self, record: CommunicationRecord) -> CommunicationRecord:
        """Persist ``record``, filling in ``id`` and ``timestamp`` when absent."""
        if not (record.lead_id or "").strip():
            raise ValidationError("lead_id is required on a communication record")

        row = LeadCommunication(
            id=record.id or uuid.uuid4(),
            lead_id=record.lead_id,
            timestamp=record.timestamp or self._clock.now(),
            type=record.type,
            title=record.title,
            body=record.body,
            sender_type=record.sender_type,
            sender_id=record.sender_id,
            recipient_id=record.recipient_id,
            cc_ids=list(record.cc_ids),
            ai_summary=record.ai_summary,
            ai_decision=record.ai_decision,
            ai_tokens_consumed=record.ai_tokens_consumed,
            attachments=[asdict(a) for a in record.attachments],
            related_workflow_state_id=record.related_workflow_state_id,
        )
        self._session.add(row)
        await self._session.flush()
        return CommunicationRecord.from_row(row)

    async def list_by_lead(self, lead_id: str) -> list[CommunicationRecord]:
        """Oldest first."""
        result = await self._session.execute(
            select(LeadCommunication)
            .where(LeadCommunication.lead_id == lead_id)
            .order_by(LeadCommunication.timestamp, LeadCommunication.seq)
        )
        return [CommunicationRecord.from_row(row) for row in result.scalars().all()]

    async def list_for_identity(self, identity: str, limit: int = 200) -> list[CommunicationRecord]:
        """Records addressed to, copied to, or sent by ``identity``. Newest first."""
        pattern = f'%"{_like_escape(identity)}"%'
        result = await self._session.execute(
            select(LeadCommunication)
            .where(
                or_(
                    LeadCommunication.recipient_id == identity,
                    LeadCommunication.sender_id == identity,
                    cast(LeadCommunication.cc_ids, String).like(pattern, escape="\\"),
                )
            )
            .order_by(LeadCommunication.timestamp.desc(), LeadCommunication.seq.desc())
            .limit(limit)
        )
        records = [CommunicationRecord.from_row(row) for row in result.scalars().all()]
        # The LIKE on serialized JSON can over-match; keep exact hits only.
        return [
            r for r in records
            if identity in (r.recipient_id, r.sender_id) or identity in r.cc_ids
        ]
