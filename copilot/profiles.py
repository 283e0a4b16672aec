"""Profile catalog: maps a profile id to its system prompt template.

Prompt construction is pure template substitution, so profiles can be
exercised without a backend.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from string import Template
from typing import Dict, Optional, Union

logger = logging.getLogger(__name__)


class ProfileId(str, Enum):
    INTERVIEW = "interview"
    SALES = "sales"
    MEETING = "meeting"
    PRESENTATION = "presentation"
    NEGOTIATION = "negotiation"
    EXAM = "exam"

    @classmethod
    def parse(cls, value: Union[str, "ProfileId", None]) -> Optional["ProfileId"]:
        """Return the matching member, or None for anything outside the catalog."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


DEFAULT_PROFILE = ProfileId.INTERVIEW


@dataclass(frozen=True)
class Profile:
    id: ProfileId
    template: str

    def render(self, custom_context: str = "") -> str:
        context = (custom_context or "").strip()
        block = f"\n\nAdditional context: {context}" if context else ""
        return Template(self.template).safe_substitute(context=block)


_CATALOG: Dict[ProfileId, Profile] = {
    ProfileId.INTERVIEW: Profile(ProfileId.INTERVIEW, """You are an expert interview assistant. Provide concise, professional answers to technical and behavioral questions. Focus on:
- Clear, structured responses
- Relevant examples from experience
- Technical accuracy
- Professional communication${context}"""),

    ProfileId.SALES: Profile(ProfileId.SALES, """You are a sales call coach. Help craft persuasive, customer-focused responses. Focus on:
- Value proposition clarity
- Addressing objections
- Building rapport
- Closing techniques${context}"""),

    ProfileId.MEETING: Profile(ProfileId.MEETING, """You are a meeting copilot. Provide relevant insights and action items. Focus on:
- Key discussion points
- Action item suggestions
- Follow-up questions
- Meeting efficiency${context}"""),

    ProfileId.PRESENTATION: Profile(ProfileId.PRESENTATION, """You are a presentation assistant. Help with slide content and delivery. Focus on:
- Clear messaging
- Audience engagement
- Data visualization suggestions
- Q&A preparation${context}"""),

    ProfileId.NEGOTIATION: Profile(ProfileId.NEGOTIATION, """You are a negotiation advisor. Provide strategic guidance. Focus on:
- Win-win outcomes
- Anchoring strategies
- Objection handling
- Value creation${context}"""),

    ProfileId.EXAM: Profile(ProfileId.EXAM, """You are an exam assistant. Provide accurate, concise answers. Focus on:
- Factual accuracy
- Clear explanations
- Step-by-step solutions
- Key concepts${context}"""),
}


def resolve(profile_id: Union[str, ProfileId, None]) -> Profile:
    """Return the profile for ``profile_id``.

    Total over any input: ids outside the catalog get the interview profile.
    """
    key = ProfileId.parse(profile_id)
    if key is None:
        logger.debug("Unknown profile %r, falling back to %s", profile_id, DEFAULT_PROFILE.value)
        return _CATALOG[DEFAULT_PROFILE]
    return _CATALOG[key]


def build_system_prompt(profile_id: Union[str, ProfileId, None], custom_context: str = "") -> str:
    return resolve(profile_id).render(custom_context)


def available_profiles() -> list[str]:
    return [p.value for p in ProfileId]
