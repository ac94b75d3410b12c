"""Generation ORM model."""
from sqlalchemy import String, DateTime, Integer, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import datetime
from app.db.session import Base


class GenerationORM(Base):
    """Aggregate of the tasks issued for one client request."""
    __tablename__ = "generations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    generation_id: Mapped[str] = mapped_column(String, unique=True, nullable=False, index=True)
    device_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    mode: Mapped[str | None] = mapped_column(String, nullable=True)
    request_data: Mapped[dict] = mapped_column(JSON, default=dict)

    status: Mapped[str] = mapped_column(
        String, nullable=False, default="processing", index=True
    )  # processing, completed, failed, mixed
    task_count: Mapped[int] = mapped_column(Integer, default=2, nullable=False)

    meta: Mapped[dict] = mapped_column("metadata", JSON, default=dict)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.now, onupdate=datetime.now
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Relationships
    tasks = relationship(
        "TaskORM",
        back_populates="generation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="TaskORM.id",
    )
