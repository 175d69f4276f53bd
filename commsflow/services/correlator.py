from typing import Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from commsflow.config import Settings
from commsflow.logging_config import get_logger
from commsflow.models import Communication, Contact, Project, ProjectContact
from commsflow.schemas.communication import CorrelationResult
from commsflow.services.matching import last_ten_digits, normalize_role, phone_participants, role_in

logger = get_logger("correlator")


def find_contacts_by_phone(db: Session, phones: Iterable[str], company_id: UUID | None = None) -> list[Contact]:
    suffixes = {last_ten_digits(p) for p in phones}
    suffixes = {s for s in suffixes if len(s) == 10}
    if not suffixes:
        return []
    query = db.query(Contact).filter(Contact.phone_suffix.in_(suffixes))
    if company_id:
        query = query.filter(Contact.company_id == company_id)
    return query.order_by(Contact.created_at).all()


def find_project_ids_for_contacts(db: Session, contact_ids: list[UUID]) -> list[UUID]:
    if not contact_ids:
        return []
    rows = (
        db.query(Project.id)
        .join(ProjectContact, ProjectContact.project_id == Project.id)
        .filter(ProjectContact.contact_id.in_(contact_ids))
        .order_by(Project.created_at)
        .all()
    )
    seen: list[UUID] = []
    for (project_id,) in rows:
        if project_id not in seen:
            seen.append(project_id)
    return seen


def classify_roles(contacts: list[Contact], settings: Settings) -> tuple[bool, bool]:
    """Return (has_pm_role, has_contractor_role) across the matched contacts."""
    has_pm = any(role_in(c.role, settings.pm_roles) for c in contacts)
    has_contractor = any(role_in(c.role, settings.contractor_roles) for c in contacts)

    unclassified = sorted(
        {
            normalize_role(c.role)
            for c in contacts
            if c.role and not role_in(c.role, settings.pm_roles) and not role_in(c.role, settings.contractor_roles)
        }
    )
    if unclassified:
        # Not guessed into either class; surfaced for whoever owns the role list
        logger.info("Unclassified contact roles", extra={"context": {"roles": unclassified}})
    return has_pm, has_contractor


def correlate(db: Session, communication: Communication, settings: Settings) -> CorrelationResult:
    """Link a communication to contacts and projects.

    PM and contractor roles on the same thread mark it multi-project even when
    only one project association exists: those two parties usually share many
    jobs. More than one distinct project is also treated as multi-project.
    """
    participants = list(communication.participants or [])
    phones = [p["value"] for p in phone_participants(participants)]
    contacts = find_contacts_by_phone(db, phones, communication.company_id)

    if not contacts:
        logger.info(
            "Communication unrouted: no matching contacts",
            extra={"context": {"communication_id": str(communication.id), "phones": phones}},
        )
        return CorrelationResult(company_id=communication.company_id)

    by_suffix = {c.phone_suffix: c.id for c in contacts}
    enriched = []
    for participant in participants:
        entry = dict(participant)
        if entry.get("type") == "phone":
            contact_id = by_suffix.get(last_ten_digits(entry.get("value")))
            if contact_id:
                entry["contact_id"] = str(contact_id)
        enriched.append(entry)
    communication.participants = enriched

    contact_ids = [c.id for c in contacts]
    project_ids = find_project_ids_for_contacts(db, contact_ids)
    has_pm, has_contractor = classify_roles(contacts, settings)

    result = CorrelationResult(
        project_id=project_ids[0] if len(project_ids) == 1 else None,
        is_multi_project=(has_pm and has_contractor) or len(project_ids) > 1,
        company_id=communication.company_id or contacts[0].company_id,
        contact_ids=contact_ids,
        candidate_project_ids=project_ids,
    )

    communication.company_id = result.company_id
    communication.project_id = result.project_id
    communication.is_multi_project = result.is_multi_project
    db.flush()

    logger.info(
        "Communication correlated",
        extra={
            "context": {
                "communication_id": str(communication.id),
                "contacts": len(contact_ids),
                "projects": [str(p) for p in project_ids],
                "is_multi_project": result.is_multi_project,
            }
        },
    )
    return result
