import json
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from commsflow.database import utcnow
from commsflow.logging_config import get_logger
from commsflow.models import Communication, Project
from commsflow.schemas.project_update import SummaryUpdate
from commsflow.services.llm.base import LLMProvider

logger = get_logger("summary_service")

SUMMARY_INSTRUCTIONS = """You keep a running summary of a construction project.
Merge the new data into the current summary. Keep dates, commitments and open questions.
Reply with exactly one JSON object and nothing else, with these keys:
  "summary": the full updated summary
  "next_step": the next concrete step for the project, or null if unchanged"""


class SummaryParseError(ValueError):
    pass


class SummaryClient(ABC):
    @abstractmethod
    def summarize(self, context: dict) -> SummaryUpdate:
        pass


def parse_summary_response(content: str) -> SummaryUpdate:
    try:
        data = json.loads((content or "").strip())
    except ValueError as exc:
        raise SummaryParseError(f"Summary response is not JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise SummaryParseError("Summary response is not a JSON object")
    try:
        return SummaryUpdate.model_validate(data)
    except ValidationError as exc:
        raise SummaryParseError(f"Summary response failed validation: {exc.error_count()} errors") from exc


class LLMSummaryClient(SummaryClient):
    def __init__(self, provider: LLMProvider, model: Optional[str] = None):
        self.provider = provider
        self.model = model

    def summarize(self, context: dict) -> SummaryUpdate:
        messages = [
            {"role": "system", "content": SUMMARY_INSTRUCTIONS},
            {"role": "user", "content": json.dumps(context, ensure_ascii=False, default=str)},
        ]
        response = self.provider.generate(
            messages,
            model=self.model,
            response_format={"type": "json_object"},
        )
        return parse_summary_response(response.content)


def communication_new_data(communication: Communication) -> dict:
    return {
        "communication_type": communication.type,
        "communication_subtype": communication.subtype,
        "communication_direction": communication.direction,
        "communication_content": communication.content or "",
        "communication_participants": communication.participants,
        "communication_timestamp": communication.timestamp.isoformat() if communication.timestamp else None,
    }


def update_project_summary(
    db: Session,
    project: Project,
    new_data: dict,
    client: Optional[SummaryClient],
    *,
    now: Optional[datetime] = None,
) -> bool:
    """Fold new data into the project's summary and next step.

    The update is advisory: a failing client leaves the project untouched
    and the caller carries on with the old summary.
    """
    if client is None:
        return False
    now = now or utcnow()
    track = project.track
    context = {
        "summary": project.summary or "",
        "next_step": project.next_step or "",
        "track_name": track.name if track else "Default Track",
        "current_date": now.date().isoformat(),
        "new_data": new_data,
    }

    try:
        update = client.summarize(context)
    except Exception as exc:
        logger.warning(
            "Project summary update failed",
            extra={"context": {"project_id": str(project.id), "error": f"{type(exc).__name__}: {exc}"}},
        )
        return False

    project.summary = update.summary
    if update.next_step:
        project.next_step = update.next_step
    db.commit()
    logger.info(
        "Project summary updated",
        extra={"context": {"project_id": str(project.id), "next_step": project.next_step}},
    )
    return True
