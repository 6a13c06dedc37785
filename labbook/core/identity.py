import re

_WHITESPACE_RUN = re.compile(r"\s+")


def normalize_name(display_name: str | None) -> str:
    """Canonical key for a worker's display name.

    Trims, collapses internal whitespace and case-folds, so "Jane  Doe" and
    " jane doe" resolve to the same worker. Two different people with the
    same name collide on purpose: leave then applies to every record under
    that name. An empty key means "unassigned".
    """
    if not display_name:
        return ""
    return _WHITESPACE_RUN.sub(" ", display_name.strip()).casefold()


def display_name(value: str | None) -> str | None:
    cleaned = _WHITESPACE_RUN.sub(" ", (value or "").strip())
    return cleaned or None
