"""Sequential business codes (RSK-00001, CTL-00001) per organization."""
from sqlalchemy import func
from sqlalchemy.orm import Session

RISK_CODE_PREFIX = "RSK"
CONTROL_CODE_PREFIX = "CTL"


def generate_code(db: Session, code_column, organization_column, organization_id: int, prefix: str) -> str:
    """Next code in format PREFIX-NNNNN for the organization.

    Codes are zero-padded so the lexicographic max is the numeric max.
    """
    max_code = db.query(func.max(code_column)).filter(
        organization_column == organization_id,
        code_column.like(f"{prefix}-%"),
    ).scalar()

    if max_code:
        try:
            next_seq = int(max_code.split("-")[-1]) + 1
        except (ValueError, IndexError):
            next_seq = 1
    else:
        next_seq = 1

    return f"{prefix}-{next_seq:05d}"
