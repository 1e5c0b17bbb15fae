"""
Idempotency key generation utilities.

Idempotency keys make a retried command (payment webhook redelivery,
double-clicked confirmation) return the prior result instead of applying
money twice.  Callers normally supply their own key (e.g. the external
payment id); these helpers build the keys the core uses when they don't.
"""

from uuid import UUID


def generate_idempotency_key(
    producer: str,
    event_type: str,
    entity_id: UUID | str,
) -> str:
    """
    Generate an idempotency key.

    Format: producer:event_type:entity_id

    Example:
        >>> generate_idempotency_key("bank", "match.confirmed", txn_id)
        "bank:match.confirmed:550e8400-e29b-41d4-a716-446655440000"
    """
    return f"{producer}:{event_type}:{entity_id}"


def match_payment_key(transaction_id: UUID | str) -> str:
    """Payment key for a confirmed bank match: one payment per transaction."""
    return generate_idempotency_key("bank", "match.confirmed", transaction_id)


def credit_note_apply_key(credit_note_id: UUID | str) -> str:
    """Default key stored when a credit note is applied without one."""
    return generate_idempotency_key("credit_notes", "credit_note.applied", credit_note_id)
