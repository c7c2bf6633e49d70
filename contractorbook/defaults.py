"""Built-in defaults used when a persisted setting is absent."""

from __future__ import annotations

import re

from .models import ContractorProfile, Job, JobStatus, UserAccount, UserRole

# Executable Apps Script web-app path. Browse/edit URLs of the spreadsheet or
# the script editor do not contain this path and are rejected up front.
ENDPOINT_PATH_MARKER = "script.google.com/macros/s/"
_ENDPOINT_RE = re.compile(r"^https://script\.google\.com/macros/s/[A-Za-z0-9_-]+/(exec|dev)/?$")

DEFAULT_CATEGORIES: tuple[str, ...] = (
    "Materials",
    "Sub-Contractors",
    "Tools",
    "Office",
    "Dump",
    "Porta John",
    "Fuel",
    "Travel",
    "Permits",
    "Other",
)

FALLBACK_CATEGORY = "Other"

INITIAL_JOBS: tuple[Job, ...] = (
    Job(
        id="job-1",
        name="Living Room Remodel",
        client="John Smith",
        address="123 Oak St, Springfield",
        contact_name="John Smith",
        phone="555-0101",
        email="john@example.com",
        status=JobStatus.ACTIVE,
        budget=5000,
    ),
    Job(
        id="job-2",
        name="Kitchen Renovation",
        client="Alice Johnson",
        address="456 Maple Ave, Riverside",
        contact_name="Alice Johnson",
        phone="555-0102",
        email="alice@example.com",
        status=JobStatus.ACTIVE,
        budget=15000,
    ),
)

BUILTIN_ACCOUNTS: dict[UserRole, UserAccount] = {
    UserRole.ADMIN: UserAccount(
        id="admin-1", name="Site Manager", email="admin@contractor.com", role=UserRole.ADMIN
    ),
    UserRole.USER: UserAccount(
        id="user-1", name="Field Agent", email="agent@contractor.com", role=UserRole.USER
    ),
}

DEFAULT_PROFILE = ContractorProfile(business_name="ContractorBook")


def is_valid_endpoint(url: str | None) -> bool:
    """Return True when ``url`` looks like an executable webhook endpoint.

    Accepts the deployed web-app form
    ``https://script.google.com/macros/s/<deployment-id>/exec`` (or ``/dev``).
    Empty strings, spreadsheet/document URLs, and editor URLs are rejected.
    """

    if not url:
        return False
    u = url.strip()
    if ENDPOINT_PATH_MARKER not in u:
        return False
    return _ENDPOINT_RE.match(u) is not None


__all__ = [
    "BUILTIN_ACCOUNTS",
    "DEFAULT_CATEGORIES",
    "DEFAULT_PROFILE",
    "ENDPOINT_PATH_MARKER",
    "FALLBACK_CATEGORY",
    "INITIAL_JOBS",
    "is_valid_endpoint",
]
