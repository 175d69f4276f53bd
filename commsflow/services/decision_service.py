import json
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from commsflow.config import Settings
from commsflow.database import ensure_utc, utcnow
from commsflow.logging_config import get_logger
from commsflow.models import Communication, Project, ProjectTrackMilestone
from commsflow.schemas.decision import Decision, DecisionPayload, DecisionResult
from commsflow.services.llm.base import LLMProvider
from commsflow.services.session_service import get_history

logger = get_logger("decision_service")

DECISION_INSTRUCTIONS = """You decide whether a construction project needs an automated action.
Reply with exactly one JSON object and nothing else, with these keys:
  "decision": one of ACTION_NEEDED, NO_ACTION, SET_FUTURE_REMINDER, REQUEST_HUMAN_REVIEW, QUERY_KNOWLEDGE_BASE
  "reason": short explanation
  "action_type": for ACTION_NEEDED one of message, data_update, escalation, human_in_loop, knowledge_query
  "action_payload": object with the fields for that action type
  "days_until_check": integer, for SET_FUTURE_REMINDER
  "check_reason": string, for SET_FUTURE_REMINDER"""


class DecisionClient(ABC):
    """Anything that can turn a decision context into a DecisionPayload."""

    @abstractmethod
    def decide(self, context: dict) -> DecisionPayload:
        pass


def parse_decision_response(content: str) -> DecisionPayload:
    """Validate a reply as a single JSON decision object.

    No fenced-block extraction or partial recovery: anything that is not a
    valid object comes back as the UNPARSABLE variant with the raw text.
    """
    text = (content or "").strip()
    if not text:
        return DecisionPayload.unparsable("Empty decision response", content)
    try:
        data = json.loads(text)
    except ValueError as exc:
        return DecisionPayload.unparsable(f"Decision response is not JSON: {exc}", content)
    if not isinstance(data, dict):
        return DecisionPayload.unparsable("Decision response is not a JSON object", content)
    try:
        return DecisionPayload.model_validate(data)
    except ValidationError as exc:
        return DecisionPayload.unparsable(f"Decision response failed validation: {exc.error_count()} errors", content)


class LLMDecisionClient(DecisionClient):
    def __init__(self, provider: LLMProvider, model: Optional[str] = None):
        self.provider = provider
        self.model = model

    def build_messages(self, context: dict) -> list[dict]:
        system = DECISION_INSTRUCTIONS
        if context.get("track_base_prompt"):
            system = f"{context['track_base_prompt']}\n\n{system}"
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": json.dumps(context, ensure_ascii=False, default=str)},
        ]

    def decide(self, context: dict) -> DecisionPayload:
        response = self.provider.generate(
            self.build_messages(context),
            model=self.model,
            response_format={"type": "json_object"},
        )
        return parse_decision_response(response.content)


def get_milestone_instructions(db: Session, project: Project) -> Optional[str]:
    if not project.track_id or not project.next_step:
        return None
    wanted = project.next_step.strip().lower()
    milestones = db.query(ProjectTrackMilestone).filter(ProjectTrackMilestone.track_id == project.track_id).all()
    for milestone in milestones:
        if (milestone.step_title or "").strip().lower() == wanted:
            return milestone.prompt_instructions
    return None


def communication_context(communication: Communication) -> dict:
    return {
        "communication_id": str(communication.id),
        "type": communication.type,
        "subtype": communication.subtype,
        "direction": communication.direction,
        "participants": communication.participants,
        "content": communication.content,
        "subject": communication.subject,
        "timestamp": communication.timestamp.isoformat() if communication.timestamp else None,
        "is_multi_project": communication.is_multi_project,
    }


def build_decision_context(
    db: Session,
    project: Project,
    communication: Optional[Communication],
    milestone_instructions: Optional[str],
    *,
    is_reminder_check: bool,
    now: datetime,
    settings: Settings,
    extra_context: Optional[dict] = None,
) -> dict:
    track = project.track
    context = {
        "project_id": str(project.id),
        "summary": project.summary or "",
        "next_step": project.next_step or "",
        "track_name": track.name if track else None,
        "track_roles": track.roles if track else None,
        "track_base_prompt": track.base_prompt if track else None,
        "current_date": now.date().isoformat(),
        "milestone_instructions": milestone_instructions,
        "is_reminder_check": is_reminder_check,
        "property_address": project.address,
    }
    if communication is not None:
        context["new_data"] = communication_context(communication)
        if communication.session_id:
            context["conversation_history"] = get_history(
                db, communication.session_id, limit=settings.history_context_limit
            )
    if extra_context:
        context.update(extra_context)
    return context


def is_within_skip_window(project: Project, now: datetime, settings: Settings) -> bool:
    last_check = ensure_utc(project.last_action_check)
    if last_check is None:
        return False
    return now - last_check < timedelta(minutes=settings.decision_skip_minutes)


def run_decision(
    db: Session,
    project: Project,
    communication: Optional[Communication],
    client: DecisionClient,
    settings: Settings,
    *,
    milestone_instructions: Optional[str] = None,
    is_reminder_check: bool = False,
    extra_context: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> DecisionResult:
    """Ask the decision client about one project, at most once per skip window.

    last_action_check is written and committed after every attempt that
    reached the client, whether it produced an action, no action or an error.
    """
    now = now or utcnow()
    if is_within_skip_window(project, now, settings):
        logger.info(
            "Decision skipped: project checked recently",
            extra={
                "context": {
                    "project_id": str(project.id),
                    "last_action_check": str(project.last_action_check),
                }
            },
        )
        return DecisionResult.skip(project.id)

    if milestone_instructions is None:
        milestone_instructions = get_milestone_instructions(db, project)
    context = build_decision_context(
        db,
        project,
        communication,
        milestone_instructions,
        is_reminder_check=is_reminder_check,
        now=now,
        settings=settings,
        extra_context=extra_context,
    )

    payload: Optional[DecisionPayload] = None
    error: Optional[str] = None
    try:
        payload = client.decide(context)
    except Exception as exc:
        error = f"{type(exc).__name__}: {exc}"
        logger.error(
            "Decision client failed",
            extra={"context": {"project_id": str(project.id), "error": error}},
        )
    finally:
        project.last_action_check = now
        db.commit()

    if payload is not None:
        level_context = {
            "project_id": str(project.id),
            "decision": payload.decision.value,
            "action_type": payload.action_type,
        }
        if payload.decision == Decision.UNPARSABLE:
            logger.warning(
                "Decision response unparsable",
                extra={
                    "context": {
                        **level_context,
                        "reason": payload.reason,
                        "raw": (payload.raw_response or "")[:300],
                    }
                },
            )
        else:
            logger.info("Decision received", extra={"context": level_context})

    return DecisionResult(project_id=str(project.id), payload=payload, error=error)
