"""
Organization import/export (JSON snapshot and Excel guest sheets)
"""

import io
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Tuple

import pandas as pd
from sqlalchemy.orm import Session

from guestlist.core.exceptions import ValidationError
from guestlist.models import Guest
from guestlist.schemas.transfer import (
    EXPORT_VERSION,
    ExportData,
    ExportGuest,
    ExportMember,
    ExportOrganization,
    ImportSummary,
)
from guestlist.services import config_service
from guestlist.services.organization_service import OrganizationService
from guestlist.services.repositories import GuestRepo, MemberRepo, OrganizationRepo
from guestlist.utils.security import SessionUser

logger = logging.getLogger(__name__)


class TransferService:
    """Service for moving an organization's data in and out"""

    REQUIRED_COLUMNS = ['name']
    SHEET_NAME = 'Guest List'

    @staticmethod
    def export_json(organization_id: str, user: SessionUser, db: Session) -> Dict[str, Any]:
        """Snapshot of the organization, its guests and members (admin only)"""
        organization = OrganizationService.require_admin(organization_id, user.id, db)

        guests = [
            ExportGuest(
                name=guest.name,
                categories=list(guest.categories or []),
                age_group=guest.age_group,
                food_preference=guest.food_preference,
                food_preferences=list(guest.food_preferences or []),
                confirmation_stage=guest.confirmation_stage,
                custom_fields=dict(guest.custom_fields or {}),
                family_color=guest.family_color,
                display_order=guest.display_order,
            )
            for guest in GuestRepo.list_ordered(db, organization_id)
        ]
        members = [
            ExportMember(
                email=member_user.email,
                name=member_user.name,
                role=member.role,
                joined_at=member.joined_at.isoformat() if member.joined_at else None,
            )
            for member, member_user in MemberRepo.list_with_users(db, organization_id)
        ]

        data = ExportData(
            version=EXPORT_VERSION,
            exported_at=datetime.now(timezone.utc).isoformat(),
            organization=ExportOrganization(
                name=organization.name,
                event_type=organization.event_type,
                configuration=organization.configuration or {},
                created_at=organization.created_at.isoformat() if organization.created_at else None,
            ),
            guests=guests,
            members=members,
            invite_code=organization.invite_code,
        )
        return data.model_dump(mode="json")

    @staticmethod
    def import_json(organization_id: str, data: ExportData, user: SessionUser, db: Session) -> Dict[str, Any]:
        """Replace the organization's settings and guests with a snapshot (admin only).

        The snapshot's invite code is adopted unless another organization
        already uses it, in which case a fresh one is generated.
        """
        organization = OrganizationService.require_admin(organization_id, user.id, db)
        configuration = config_service.validate_configuration(data.organization.configuration)
        defaults = config_service.guest_defaults(configuration)

        try:
            organization.name = data.organization.name
            organization.event_type = data.organization.event_type
            organization.configuration = configuration
            organization.updated_at = datetime.utcnow()

            GuestRepo.delete_all(db, organization_id)
            ordered = sorted(
                enumerate(data.guests),
                key=lambda item: (item[1].display_order if item[1].display_order is not None else item[0] + 1, item[0]),
            )
            for position, (_, guest) in enumerate(ordered, start=1):
                GuestRepo.add(db, Guest(
                    organization_id=organization_id,
                    name=guest.name,
                    categories=guest.categories or defaults["categories"],
                    age_group=guest.age_group,
                    food_preference=guest.food_preference,
                    food_preferences=guest.food_preferences,
                    confirmation_stage=guest.confirmation_stage or defaults["confirmation_stage"],
                    custom_fields=guest.custom_fields,
                    family_color=guest.family_color,
                    display_order=position,
                    created_by=user.id,
                ))

            if data.invite_code:
                code = data.invite_code.upper()
                if OrganizationRepo.invite_code_taken(db, code, exclude_id=organization_id):
                    code = OrganizationService.generate_invite_code(db)
                organization.invite_code = code

            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info(f"Imported {len(data.guests)} guests into organization {organization_id}")
        return ImportSummary(
            organization_updated=True,
            guests_imported=len(data.guests),
            members_info=len(data.members),
            invite_code_updated=bool(data.invite_code),
        ).model_dump()

    @staticmethod
    def export_excel(organization_id: str, user: SessionUser, db: Session) -> bytes:
        """Guest list as an .xlsx sheet with configuration labels resolved"""
        organization, _ = OrganizationService.require_member(organization_id, user.id, db)
        configuration = organization.configuration or {}
        labels = TransferService._label_maps(configuration)
        custom_fields = configuration.get("customFields") or []

        rows = []
        for guest in GuestRepo.list_ordered(db, organization_id):
            row = {
                'Order': guest.display_order,
                'Name': guest.name,
                'Categories': ', '.join(labels['categories'].get(c, c) for c in guest.categories or []),
                'Age Group': labels['age_groups'].get(guest.age_group, guest.age_group or ''),
                'Food Preferences': ', '.join(
                    labels['food'].get(f, f) for f in (guest.food_preferences or ([guest.food_preference] if guest.food_preference else []))
                ),
                'Confirmation Stage': labels['stages'].get(guest.confirmation_stage, guest.confirmation_stage),
                'Family Color': guest.family_color or '',
            }
            for field in custom_fields:
                value = (guest.custom_fields or {}).get(field['id'], '')
                if isinstance(value, list):
                    value = ', '.join(str(v) for v in value)
                row[field['label']] = value
            rows.append(row)

        columns = ['Order', 'Name', 'Categories', 'Age Group', 'Food Preferences', 'Confirmation Stage', 'Family Color']
        columns += [field['label'] for field in custom_fields]
        df = pd.DataFrame(rows, columns=columns)

        buffer = io.BytesIO()
        with pd.ExcelWriter(buffer, engine='openpyxl') as writer:
            df.to_excel(writer, index=False, sheet_name=TransferService.SHEET_NAME)

        return buffer.getvalue()

    @staticmethod
    def validate_excel_structure(df: pd.DataFrame) -> Tuple[bool, List[str]]:
        """Validate Excel file structure"""
        errors = []

        normalized_columns = [str(col).lower().strip() for col in df.columns]
        missing_columns = [col for col in TransferService.REQUIRED_COLUMNS if col not in normalized_columns]
        if missing_columns:
            errors.append(f"Missing required columns: {', '.join(missing_columns)}")

        return len(errors) == 0, errors

    @staticmethod
    def import_excel(organization_id: str, file_content: bytes, user: SessionUser, db: Session) -> Dict[str, Any]:
        """Append the guests of an uploaded sheet to the end of the list (admin only).

        Categories and confirmation stages may be given by id or label;
        unknown values fall back to the configuration defaults.
        """
        organization = OrganizationService.require_admin(organization_id, user.id, db)
        configuration = organization.configuration or {}
        defaults = config_service.guest_defaults(configuration)
        ids = TransferService._id_lookup(configuration)

        try:
            df = pd.read_excel(io.BytesIO(file_content))
        except Exception as e:
            raise ValidationError(f"Error reading Excel file: {str(e)}")

        valid_structure, structure_errors = TransferService.validate_excel_structure(df)
        if not valid_structure:
            raise ValidationError("Invalid Excel file", details=structure_errors)

        column_mapping = {}
        for col in df.columns:
            col_lower = str(col).lower().strip()
            if col_lower == 'name':
                column_mapping['name'] = col
            elif 'categor' in col_lower:
                column_mapping['categories'] = col
            elif 'stage' in col_lower or 'confirmation' in col_lower:
                column_mapping['stage'] = col
            elif 'color' in col_lower:
                column_mapping['color'] = col

        warnings: List[str] = []
        imported = 0
        position = GuestRepo.max_display_order(db, organization_id)

        for index, row in df.iterrows():
            name = row[column_mapping['name']]
            if pd.isna(name) or not str(name).strip():
                warnings.append(f"Row {index + 2}: missing name, skipped")
                continue

            categories = []
            if 'categories' in column_mapping and not pd.isna(row[column_mapping['categories']]):
                for part in str(row[column_mapping['categories']]).split(','):
                    category = ids['categories'].get(part.strip().lower())
                    if category and category not in categories:
                        categories.append(category)

            stage = None
            if 'stage' in column_mapping and not pd.isna(row[column_mapping['stage']]):
                stage = ids['stages'].get(str(row[column_mapping['stage']]).strip().lower())

            color = None
            if 'color' in column_mapping and not pd.isna(row[column_mapping['color']]):
                color = str(row[column_mapping['color']]).strip() or None

            position += 1
            GuestRepo.add(db, Guest(
                organization_id=organization_id,
                name=str(name).strip(),
                categories=categories or defaults['categories'],
                age_group=defaults['age_group'],
                food_preference=defaults['food_preference'],
                food_preferences=defaults['food_preferences'],
                confirmation_stage=stage or defaults['confirmation_stage'],
                custom_fields={},
                family_color=color,
                display_order=position,
                created_by=user.id,
            ))
            imported += 1

        db.commit()
        logger.info(f"Imported {imported} guests from Excel into organization {organization_id}")
        return {"guests_imported": imported, "warnings": warnings}

    @staticmethod
    def _label_maps(configuration: Dict[str, Any]) -> Dict[str, Dict[str, str]]:
        return {
            'categories': {c['id']: c['label'] for c in configuration.get('categories') or []},
            'age_groups': {g['id']: g['label'] for g in (configuration.get('ageGroups') or {}).get('groups') or []},
            'food': {o['id']: o['label'] for o in (configuration.get('foodPreferences') or {}).get('options') or []},
            'stages': {s['id']: s['label'] for s in (configuration.get('confirmationStages') or {}).get('stages') or []},
        }

    @staticmethod
    def _id_lookup(configuration: Dict[str, Any]) -> Dict[str, Dict[str, str]]:
        """Map lowercased ids and labels back to ids"""
        lookup: Dict[str, Dict[str, str]] = {}
        for key, mapping in TransferService._label_maps(configuration).items():
            lookup[key] = {}
            for item_id, label in mapping.items():
                lookup[key][item_id.lower()] = item_id
                lookup[key][label.lower()] = item_id
        return lookup
