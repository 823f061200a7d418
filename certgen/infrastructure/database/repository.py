# certgen/infrastructure/database/repository.py
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from certgen.config.database import AsyncSessionLocal
from certgen.config.logger import get_logger
from certgen.domain.errors import StorageError, TemplateNotFoundError
from certgen.infrastructure.database.models import Certificate, Member, Template

logger = get_logger(__name__, "REPO")


@dataclass
class TemplateRecord:
    id: str
    name: str
    image_path: Optional[str]
    score_image_path: Optional[str]
    is_dual_template: bool
    layout_config: Optional[Dict[str, Any]]


def _parse_uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class CertificateRepository:
    """Template lookup, layout save, member lookup and certificate-record insert."""

    def __init__(self, session_factory=AsyncSessionLocal):
        self.session_factory = session_factory

    async def get_template(self, template_id: str) -> TemplateRecord:
        key = _parse_uuid(template_id)
        if key is None:
            raise TemplateNotFoundError(f"Template '{template_id}' tidak ditemukan.", field="template_id")
        try:
            async with self.session_factory() as session:
                row = await session.get(Template, key)
        except SQLAlchemyError as e:
            raise StorageError(f"Gagal membaca template: {type(e).__name__}") from e
        if row is None:
            raise TemplateNotFoundError(f"Template '{template_id}' tidak ditemukan.", field="template_id")
        return TemplateRecord(
            id=str(row.id),
            name=row.name,
            image_path=row.image_path,
            score_image_path=row.score_image_path,
            is_dual_template=bool(row.is_dual_template),
            layout_config=row.layout_config,
        )

    async def save_layout(self, template_id: str, layout: Dict[str, Any]) -> None:
        """Replaces the stored layout document wholesale (last write wins)."""
        key = _parse_uuid(template_id)
        if key is None:
            raise TemplateNotFoundError(f"Template '{template_id}' tidak ditemukan.", field="template_id")
        try:
            async with self.session_factory() as session:
                row = await session.get(Template, key)
                if row is None:
                    raise TemplateNotFoundError(f"Template '{template_id}' tidak ditemukan.", field="template_id")
                row.layout_config = layout
                row.is_dual_template = layout.get("score") is not None
                await session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"Gagal menyimpan layout: {type(e).__name__}") from e
        logger.info(f"Layout template {template_id} disimpan.")

    async def get_members(self, member_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        """``{member_id: fields}`` for the ids that exist; unknown ids are simply absent."""
        keys = [k for k in (_parse_uuid(i) for i in member_ids) if k is not None]
        if not keys:
            return {}
        try:
            async with self.session_factory() as session:
                result = await session.execute(select(Member).where(Member.id.in_(keys)))
                members = result.scalars().all()
        except SQLAlchemyError as e:
            raise StorageError(f"Gagal membaca data member: {type(e).__name__}") from e
        return {str(m.id): m.to_fields() for m in members}

    async def save_certificate(self, record: Dict[str, Any]) -> str:
        try:
            async with self.session_factory() as session:
                row = Certificate(
                    template_id=_parse_uuid(record["template_id"]),
                    member_id=_parse_uuid(record["member_id"]) if record.get("member_id") else None,
                    certificate_no=record["certificate_no"],
                    name=record["name"],
                    issue_date=record.get("issue_date"),
                    expired_date=record.get("expired_date"),
                    certificate_url=record.get("certificate_url"),
                    score_url=record.get("score_url"),
                    field_values=record.get("field_values"),
                )
                session.add(row)
                await session.commit()
                return str(row.id)
        except SQLAlchemyError as e:
            raise StorageError(f"Gagal menyimpan data sertifikat: {type(e).__name__}") from e
