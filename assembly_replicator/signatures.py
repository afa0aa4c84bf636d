"""
signatures.py

Builds the string key used to pair a member of one instance with its counterpart
in another instance of the same definition.

The key is made of '|'-terminated fields:
    <concrete type>|<category id>|<type id>|[L:<length>|][H:<height>|][<comment>|]

Length is written for curve members and height for walls that have one, both at
fixed precision so float noise below the last digit does not split keys. Area and
volume never take part: they depend on neighbouring geometry and differ between
otherwise identical placements.
"""

from .model_entities import Member, CurveMember, Wall


def _fixed(value: float, decimals: int) -> str:
    return f"{value:.{decimals}f}"


def build_signature(member: Member, decimals: int = 6) -> str:
    """Pure function of the member's attributes; equal members give equal keys."""
    parts = [
        type(member).__name__,
        str(member.category_id),
        "" if member.type_id is None else str(member.type_id),
    ]
    if isinstance(member, CurveMember):
        parts.append("L:" + _fixed(member.length, decimals))
    if isinstance(member, Wall) and member.height is not None:
        parts.append("H:" + _fixed(member.height, decimals))
    if member.comment:
        parts.append(member.comment)
    return "".join(part + "|" for part in parts)
