import secrets
import uuid

def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"

def new_payload_tag(prefix: str = "BudgetLim") -> str:
    # unguessable so user text can't forge or collide with the delimiter
    return f"{prefix}_{secrets.token_hex(6)}"

"""
ID generation utilities & it provides:
- Plan IDs
- Event IDs
- Per-request payload tag names

The main purpose:
Consistent identifier creation across system.
"""
