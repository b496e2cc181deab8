"""
Repository for clinic and assistant-mapping lookups.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vetcall.clinics.models import AssistantEnvironment, Clinic, ClinicAssistant, ClinicProvider


class ClinicRepository:
    """Read-side queries over clinics and their assistant mappings."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_slug(self, slug: str) -> Clinic | None:
        result = await self._session.execute(select(Clinic).where(Clinic.slug == slug))
        return result.scalar_one_or_none()

    async def get_mapping_by_phone_number_id(self, phone_number_id: str) -> ClinicAssistant | None:
        """Active production mapping serving the given provider phone number."""
        stmt = (
            select(ClinicAssistant)
            .join(Clinic, Clinic.id == ClinicAssistant.clinic_id)
            .where(
                ClinicAssistant.phone_number_id == phone_number_id,
                ClinicAssistant.is_active.is_(True),
                ClinicAssistant.environment == AssistantEnvironment.PRODUCTION,
                Clinic.is_active.is_(True),
            )
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_clinic_for_assistant(self, assistant_id: str) -> Clinic | None:
        """Clinic owning the given provider assistant id."""
        stmt = (
            select(Clinic)
            .join(ClinicAssistant, Clinic.id == ClinicAssistant.clinic_id)
            .where(ClinicAssistant.assistant_id == assistant_id)
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_provider(self, clinic_id: UUID, name: str) -> ClinicProvider | None:
        """First active provider whose name contains ``name``, case-insensitive."""
        stmt = (
            select(ClinicProvider)
            .where(
                ClinicProvider.clinic_id == clinic_id,
                ClinicProvider.is_active.is_(True),
                ClinicProvider.name.ilike(f"%{name}%"),
            )
            .order_by(ClinicProvider.name)
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()
