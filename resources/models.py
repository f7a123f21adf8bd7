"""
resources/models.py -- Domain dataclass for owner-scoped resources.

Pure data container with zero logic. Ownership rules are enforced by the
route layer through auth.rbac.check_owner(); the store only persists.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class Resource:
    """An item owned by exactly one user.

    owner_id is the id of the user who created it and never changes.
    id is None before the record is written to the database.
    """

    owner_id: str
    title: str
    description: Optional[str] = None
    id: Optional[str] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""
    deleted_at: Optional[str] = None  # soft delete
