from __future__ import annotations

from typing import Optional

STATUS_OPTIONS = [
    ("primeceno", "Noticed"),
    ("prijavljeno", "Reported"),
    ("reseno", "Resolved"),
]
STATUS_LABELS = {value: label for value, label in STATUS_OPTIONS}
STATUS_DEFAULT = "prijavljeno"
# Query-string sentinel for "no status filter".
STATUS_FILTER_ALL = "svi"

PRIORITY_OPTIONS = [
    ("nizak", "Low"),
    ("srednji", "Medium"),
    ("visok", "High"),
]
PRIORITY_LABELS = {value: label for value, label in PRIORITY_OPTIONS}
PRIORITY_DEFAULT = "srednji"

# Suggested labels for the map form; the store accepts any non-empty type.
PROBLEM_TYPES = [
    "Rupe na putu",
    "Radovi na putu",
    "Saobraćajna nezgoda",
    "Gužva / zastoj",
    "Neispravna signalizacija",
    "Nepropisno parkiranje",
    "Ostalo",
]

UPLOAD_URL_PREFIX = "/uploads/"
REMOTE_IMAGE_SCHEMES = ("http://", "https://")


def status_label(status: Optional[str]) -> str:
    if not status:
        return "-"
    return STATUS_LABELS.get(status, status)


def priority_label(priority: Optional[str]) -> str:
    if not priority:
        return "-"
    return PRIORITY_LABELS.get(priority, priority)
