# certgen/infrastructure/database/models.py
import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Template(Base):
    __tablename__ = "templates"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    category = Column(String)
    image_path = Column(String)           # certificate surface background (URL or path)
    score_image_path = Column(String)     # score surface background, dual templates only
    is_dual_template = Column(Boolean, default=False)
    layout_config = Column(JSON)          # the whole layout document
    create_time = Column(DateTime, server_default=func.now())
    update_time = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Member(Base):
    __tablename__ = "members"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    email = Column(String)
    organization = Column(String)
    phone = Column(String)
    job = Column(String)
    extra_fields = Column(JSON)           # free-form fields usable as layer values

    def to_fields(self) -> dict:
        fields = dict(self.extra_fields or {})
        fields.update({
            "name": self.name,
            "email": self.email,
            "organization": self.organization,
            "phone": self.phone,
            "job": self.job,
        })
        return {k: v for k, v in fields.items() if v is not None}


class Certificate(Base):
    __tablename__ = "certificates"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    template_id = Column(UUID(as_uuid=True), ForeignKey("templates.id"), nullable=False)
    member_id = Column(UUID(as_uuid=True), ForeignKey("members.id"))
    certificate_no = Column(String, nullable=False)
    name = Column(String, nullable=False)
    issue_date = Column(String)
    expired_date = Column(String)
    certificate_url = Column(String)
    score_url = Column(String)
    field_values = Column(JSON)
    create_time = Column(DateTime, server_default=func.now())
