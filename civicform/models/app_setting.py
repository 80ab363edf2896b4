"""
Runtime key/value settings stored in `app_settings`.

Distinct from civicform.config (environment configuration): these values are
editable through POST /api/settings while the service runs. Values are stored
as text and decoded according to `data_type` on read.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, String, Text, false, text
from sqlalchemy.orm import Mapped, mapped_column

from civicform.database import Base
from civicform.timeutils import utcnow


class AppSetting(Base):
    __tablename__ = "app_settings"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    # string | number | boolean | json
    data_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="string",
        server_default=text("'string'"),
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_encrypted: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    def __repr__(self) -> str:
        return f"<AppSetting(key='{self.key}', data_type='{self.data_type}')>"
