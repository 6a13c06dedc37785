WAITING = "waiting"
ACCEPTED = "accepted"
REJECTED = "rejected"

REMARKS_STATUSES = (WAITING, ACCEPTED, REJECTED)
ADMIN_DECISIONS = (ACCEPTED, REJECTED)


def clean_remarks(text: str | None) -> str | None:
    cleaned = (text or "").strip()
    return cleaned or None


def parse_decision(raw: str | None) -> str:
    value = (raw or "").strip().lower()
    if value not in ADMIN_DECISIONS:
        raise ValueError("Remarks status must be 'accepted' or 'rejected'")
    return value


def next_remarks_status(
    current: str,
    old_text: str | None,
    new_text: str | None,
    explicit: str | None = None,
) -> str:
    """Remarks approval after an edit.

    An explicit admin decision wins. Otherwise a change of the remarks text
    sends the approval back to waiting, and anything else keeps it.
    """
    if explicit is not None:
        value = (explicit or "").strip().lower()
        if value not in REMARKS_STATUSES:
            raise ValueError(f"Invalid remarks status: {explicit}")
        return value
    if clean_remarks(old_text) != clean_remarks(new_text):
        return WAITING
    return current or WAITING
