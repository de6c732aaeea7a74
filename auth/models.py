"""
auth/models.py -- Domain dataclass for API credentials.

Pattern: Data class (pure data container, zero logic). The store does the
work; routes and the auth gate pass Application objects around.

Layer rule: no imports from api/, catalog/, or core/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Application:
    """An API consumer identified by the (api_key, app_name) pair.

    app_name is not unique: several keys may belong to one application, and a
    request must present both the key and the name it was issued to.

    The raw key is stored as issued. It is a 256-bit random token, so a
    lookup by exact value is safe and there is nothing to gain from a slow
    hash. Keys are never deleted; is_active=False is the end of a key's life.
    """

    api_key: str
    app_name: str
    id: int | None = None
    created_at: str | None = None
    last_used: str | None = None  # None until the first successful authentication
    is_active: bool = True
