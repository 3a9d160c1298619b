# Overview: Service-layer operations for document numbering; bill numbers are allocated, never reused.

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import utcnow


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def next_document_number(
    *,
    document_type: str,
    prefix: str,
    period_key: str,
    pad: int = 4,
) -> str:
    """
    Atomically allocate the next document number for a type/period.

    Uses an UPDATE ... SET next_number = next_number + 1 so two sessions
    cannot read the same value. Runs inside the caller's transaction (flush,
    no commit): if the caller rolls back, the number is released together
    with the document that would have used it.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")
    if not period_key:
        raise DocumentSequenceError("period_key is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.period_key == period_key,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type, period_key=period_key)
            .scalar()
        )
        next_num = current - 1
    else:
        seq = DocumentSequence(document_type=document_type, period_key=period_key, next_number=2)
        try:
            with db.session.begin_nested():
                db.session.add(seq)
            next_num = 1
        except IntegrityError:
            # Another session created the row first; take the next value from it.
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise DocumentSequenceError(f"Unable to allocate {document_type} number")
            current = (
                db.session.query(DocumentSequence.next_number)
                .filter_by(document_type=document_type, period_key=period_key)
                .scalar()
            )
            next_num = current - 1

    return f"{prefix}-{period_key}-{next_num:0{pad}d}"


def next_bill_number(when: datetime | None = None) -> str:
    """Bill numbers look like BILL-20260211-0001, restarting each day."""
    when = when or utcnow()
    prefix = current_app.config.get("BILL_NUMBER_PREFIX", "BILL")
    return next_document_number(
        document_type="SALE",
        prefix=prefix,
        period_key=when.strftime("%Y%m%d"),
    )
