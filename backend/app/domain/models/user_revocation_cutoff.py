import uuid
from datetime import datetime

from sqlalchemy import String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.infrastructure.db.base import Base, JSONType, UTCDateTime


class UserRevocationCutoff(Base):
    """Tokens of ``user_id`` issued before ``valid_after`` are revoked,
    except the jtis listed in ``exempt_jtis``."""

    __tablename__ = "user_revocation_cutoffs"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    valid_after: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    reason: Mapped[str] = mapped_column(String(32), nullable=False)
    exempt_jtis: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
