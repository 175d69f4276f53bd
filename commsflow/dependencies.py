from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from commsflow.config import Settings
from commsflow.services.action_executor import ActionExecutor
from commsflow.services.channel_service import ChannelSender, build_channel_sender
from commsflow.services.crm_client import CRMClient, build_crm_client
from commsflow.services.decision_service import DecisionClient, LLMDecisionClient
from commsflow.services.knowledge_service import KnowledgeClient, build_knowledge_client
from commsflow.services.llm import OpenAIProvider
from commsflow.services.summary_service import LLMSummaryClient, SummaryClient


@dataclass
class Services:
    """External collaborators, built once per process and handed to handlers."""

    settings: Settings
    decision_client: DecisionClient
    channel_sender: ChannelSender
    crm_client: CRMClient
    knowledge_client: KnowledgeClient
    summary_client: Optional[SummaryClient] = None

    def executor(self) -> ActionExecutor:
        return ActionExecutor(self.channel_sender, self.knowledge_client, self.settings)


def build_services(settings: Settings) -> Services:
    provider = OpenAIProvider(
        api_key=settings.openai_api_key or "",
        default_model=settings.decision_model,
        base_url=settings.openai_base_url,
        timeout_seconds=settings.decision_timeout_seconds,
    )
    return Services(
        settings=settings,
        decision_client=LLMDecisionClient(provider, settings.decision_model),
        channel_sender=build_channel_sender(settings),
        crm_client=build_crm_client(settings),
        knowledge_client=build_knowledge_client(settings),
        summary_client=LLMSummaryClient(provider, settings.summary_model or settings.decision_model),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
