"""
Agenda template lookup.

Each meeting kind may have a standard agenda. A tenant can override it with
its own active ``AgendaTemplate``; otherwise the built-in list below applies.
PLANNING has no standard agenda: the caller's agenda is used as-is.

``seed_default_templates`` copies the built-ins into a tenant so they can be
edited; it is exposed as the ``seed-agenda-templates`` CLI command.
"""

import logging

from sqlalchemy import select

from auditflow.models import db
from auditflow.models.meeting import AgendaTemplate, AgendaTemplateItem

logger = logging.getLogger(__name__)

OPENING_MEETING_AGENDA = (
    "Introduction and registration",
    "Confirmation of Audit Objectives, Scope & Criteria",
    "Confirmation of the Audit plan",
    "Methods and procedures to be used to conduct the audit",
    "Confirmation of the formal Communication channels",
    "Confirmation of language to be used during the audit",
    "Confirmation that during the audit, the auditee shall be kept informed of Progress",
    "Confirmation of Resources required",
    "Confirmation of matters relating to Confidentiality",
    "Confirmation of the relevant work safety, emergency and Safety of the Auditors",
    "Confirmation of the Availability of guides ,including stating their roles and responsibilities",
    "Method of Reporting of the findings including grading of non conformities",
    "Conditions under which an audit may be terminated",
)

CLOSING_MEETING_AGENDA = (
    "Introduction and Registration",
    "Thanking the Auditee",
    "Reconfirmation audit Objectives and scope and criteria",
    "Mention of principles of sampling followed in auditing",
    "Presentation of the findings - summary Positives, Observation and nonconformities in detail",
    "Presentation of conclusion and opinion",
    "Discussion on the findings",
    "Corrective action dates",
    "Follow up dates",
    "Reconfirmation of confidentiality",
)

MANAGEMENT_REVIEW_AGENDA = (
    "MIN 1: PRELIMINARIES",
    "MIN 2: READING AND CONFIRMATION OF PREVIOUS MINUTES",
    "MIN 3: MATTERS ARISING - FOLLOWUP ACTIONS FROM PREVIOUS MANAGEMENT REVIEW MEETING",
    "MIN 4: REVIEW OF QUALITY POLICY AND OBJECTIVES",
    "MIN 5: REVIEW OF ORGANIZATIONAL STRUCTURE AND RESOURCES",
    "MIN 6: CUSTOMER FEEDBACK",
    "MIN 7: STATUS OF RISK AND CORRECTIVE ACTION",
    "MIN 8: CHANGES THAT COULD AFFECT THE MANAGEMENT SYSTEM",
    "MIN 9: RECOMMENDATIONS FOR IMPROVEMENT",
    "MIN 10: AOB",
)

BUILTIN_AGENDAS: dict[str, tuple[str, ...]] = {
    "OPENING": OPENING_MEETING_AGENDA,
    "CLOSING": CLOSING_MEETING_AGENDA,
    "MANAGEMENT_REVIEW": MANAGEMENT_REVIEW_AGENDA,
}


def tenant_template_items(tenant_id: int, meeting_type: str) -> list[str]:
    """Agenda lines of the tenant's newest active template for the kind, or []."""
    template = db.session.execute(
        select(AgendaTemplate)
        .where(
            AgendaTemplate.tenant_id == tenant_id,
            AgendaTemplate.meeting_type == meeting_type,
            AgendaTemplate.is_active.is_(True),
        )
        .order_by(AgendaTemplate.created_at.desc(), AgendaTemplate.id.desc())
        .limit(1)
    ).scalar_one_or_none()
    if template is None:
        return []
    return [item.agenda_text for item in template.items]


def resolve_agenda(tenant_id: int, meeting_type: str, fallback=None) -> list[str]:
    """Tenant template → built-in template → caller-supplied agenda."""
    items = tenant_template_items(tenant_id, meeting_type)
    if items:
        return items
    builtin = BUILTIN_AGENDAS.get(meeting_type)
    if builtin:
        return list(builtin)
    return list(fallback or [])


def seed_default_templates(tenant_id: int) -> int:
    """Copy the built-in agendas into tenant templates that do not exist yet.

    Flushes only; the caller commits. Returns the number of templates created.
    """
    created = 0
    for meeting_type, lines in BUILTIN_AGENDAS.items():
        name = f"Standard {meeting_type.replace('_', ' ').title()} Agenda"
        exists = db.session.execute(
            select(AgendaTemplate.id).where(
                AgendaTemplate.tenant_id == tenant_id,
                AgendaTemplate.meeting_type == meeting_type,
                AgendaTemplate.name == name,
            )
        ).scalar_one_or_none()
        if exists:
            continue
        template = AgendaTemplate(tenant_id=tenant_id, meeting_type=meeting_type, name=name)
        template.items = [
            AgendaTemplateItem(agenda_text=text, order=index)
            for index, text in enumerate(lines, start=1)
        ]
        db.session.add(template)
        created += 1
    db.session.flush()
    logger.info("Seeded %d agenda template(s)", created, extra={"tenant_id": tenant_id})
    return created
