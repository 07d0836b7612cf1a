# app/models/goal.py
import uuid
from datetime import datetime
from sqlalchemy import Column, String, Text, Date, DateTime, ForeignKey, Boolean, Uuid
from sqlalchemy.orm import relationship
from app.core.database import Base

class Goal(Base):
    __tablename__ = "goals"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    target_date = Column(Date, nullable=True)
    completed = Column(Boolean, default=False, nullable=False)
    task_summary = Column(Text, nullable=True)

    # Set by the image generator; image_loading stays true until a usable image exists
    image_url = Column(String, nullable=True)
    image_loading = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="goals")
    tasks = relationship(
        "Task",
        back_populates="goal",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Task.order_number",
    )

    def __repr__(self):
        return f"<Goal title={self.title!r} image_loading={self.image_loading} user_id={self.user_id}>"
