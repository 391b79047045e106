"""
LLM email writer.

Builds a system prompt from the campaign instructions and sender identity,
a user prompt from the contact and company, and asks an OpenAI-compatible
chat-completions endpoint for ``{"subject": ..., "body": ...}``.
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Optional, List

import openai

from outreach.core.config import settings
from outreach.core.exceptions import LLMServiceException, ServiceNotConfiguredException
from outreach.models.campaign import Campaign
from outreach.models.company import Company
from outreach.models.contact import Contact
from outreach.models.event import Event
from outreach.models.sender_profile import SenderProfile

logger = logging.getLogger(__name__)

DEFAULT_BASE_URLS = {
    "openai": "https://api.openai.com/v1",
    "anthropic": "https://api.anthropic.com/v1",
    "deepseek": "https://api.deepseek.com/v1",
    "openrouter": "https://openrouter.ai/api/v1",
}

DEFAULT_SUBJECT = "Quick note"

_JSON_BLOCK = re.compile(r"\{[\s\S]*\"subject\"[\s\S]*\"body\"[\s\S]*\}")

SUBJECT_RULES = [
    "3-6 words ideal. Shorter subjects get higher open rates.",
    "Lowercase style is fine for common words, but always capitalize proper nouns: "
    "company names, brand names, event names, city names and people's names.",
    "Reference their company name, role, or something specific to them when natural.",
    "Must feel like one human writing to another, not a campaign.",
    'NEVER use: "Quick question", "Partnership opportunity", "Exciting news", "Touching base", '
    "or any pattern that screams mass email.",
    "NEVER use clickbait, ALL CAPS words, exclamation marks, or emojis.",
    "Each recipient MUST get a unique subject line. No two should follow the same template.",
]


@dataclass
class GeneratedEmail:
    subject: str
    body: str


def parse_generated_email(text: str) -> GeneratedEmail:
    """JSON object if there is one, otherwise a ``Subject:`` line plus the rest as body."""
    match = _JSON_BLOCK.search(text or "")
    if match:
        try:
            parsed = json.loads(match.group(0))
            return GeneratedEmail(
                subject=str(parsed.get("subject") or "").strip(),
                body=str(parsed.get("body") or "").strip(),
            )
        except (json.JSONDecodeError, AttributeError):
            logger.debug("Generator output looked like JSON but did not parse, using line fallback")

    lines = (text or "").strip().split("\n")
    subject = DEFAULT_SUBJECT
    body_lines = []
    for line in lines:
        if line.lower().startswith("subject:"):
            subject = line[len("subject:"):].strip() or DEFAULT_SUBJECT
        else:
            body_lines.append(line)
    return GeneratedEmail(subject=subject, body="\n".join(body_lines).strip())


def _format_event(event: Event) -> str:
    info = [event.name]
    if event.start_date:
        if event.end_date:
            info.append(f"{event.start_date:%B} {event.start_date.day} - {event.end_date:%B} {event.end_date.day}, {event.end_date.year}")
        else:
            info.append(f"{event.start_date:%B} {event.start_date.day}, {event.start_date.year}")
    if event.city:
        info.append(f"{event.city}, {event.state}" if event.state else event.city)
    if event.registration_url:
        info.append(event.registration_url)
    return "- " + " | ".join(info)


def build_system_prompt(campaign: Campaign, sender: SenderProfile, events: Optional[List[Event]] = None) -> str:
    parts = []

    if campaign.tone:
        parts.append(f"## Writing Tone\n\n{campaign.tone}")
    else:
        parts.append("## Writing Tone\n\nWarm, direct and specific. Sound like a peer, not a marketer.")

    first_name = sender.name.split(" ")[0] if sender.name else ""
    parts.append(
        f"## You Are Writing As\n\nName: {sender.name}\nTitle: {sender.title or 'the team'}\n\n"
        "Write the email body only. Do NOT include a signature block (that gets appended separately). "
        f'You may use the sender\'s first name for a casual sign-off like "- {first_name}" at the end.'
    )

    parts.append(f"## Campaign Purpose\n\n{campaign.purpose}")

    if events:
        event_lines = "\n".join(_format_event(e) for e in events)
        parts.append(
            "## Campaign Events\n\nThis campaign is promoting the following event(s). "
            f"Reference them naturally in the email when relevant:\n{event_lines}"
        )

    if campaign.call_to_action:
        parts.append(f"## Call to Action\n\nEvery email must end with or naturally include this ask: {campaign.call_to_action}")

    if campaign.must_include:
        parts.append(f"## MUST Include (verbatim)\n\nThe following must appear exactly as written somewhere in the email:\n{campaign.must_include}")

    if campaign.must_avoid:
        parts.append(
            "## BANNED Words & Phrases\n\nDo not use any of the following in the subject line or body, "
            f"not even paraphrased:\n\n{campaign.must_avoid}"
        )

    if campaign.reference_email:
        parts.append(
            "## Reference Email (Style Guide)\n\nUse this sample for tone, cadence and formality only. "
            f"Do NOT copy any phrases verbatim.\n\n---\n{campaign.reference_email}\n---"
        )

    if campaign.context:
        parts.append(
            "## Background Context (DO NOT say any of this in the email)\n\n"
            f"This is context for you to understand the situation:\n{campaign.context}"
        )

    parts.append(
        f"## Word Limit\n\nKeep the email body under {campaign.max_words} words. Shorter is better. "
        "This should feel like a quick personal note, not a marketing email."
    )

    rules = "\n- ".join(SUBJECT_RULES)
    if campaign.subject_prompt:
        parts.append(
            f"## Subject Line Style\n\nCore rules (always apply):\n- {rules}\n\n"
            f"Additional style instructions from campaign creator:\n{campaign.subject_prompt}"
        )
    else:
        parts.append(f"## Subject Line Style\n\n- {rules}")

    parts.append(
        "## Output Format\n\nReturn ONLY a JSON object with two fields:\n"
        '```json\n{"subject": "the subject line", "body": "the email body as plain text"}\n```\n\n'
        "Do not include any other text, explanation, or markdown outside the JSON."
    )

    return "\n\n".join(parts)


def build_user_prompt(contact: Contact, company: Optional[Company]) -> str:
    parts = ["Write a personalized email to this person:", "\n**Contact:**"]

    if (contact.first_name or "").strip() or (contact.last_name or "").strip():
        parts.append(f"- Name: {contact.full_name}")
    else:
        parts.append(
            "- Name: [Unknown, this is a generic address. Do NOT greet anyone by name "
            'and do not guess a name from the email address. Use "Hi there," or no greeting.]'
        )
    if contact.title:
        parts.append(f"- Title: {contact.title}")
    if contact.seniority:
        parts.append(f"- Seniority: {contact.seniority}")

    if company:
        parts.append(f"\n**Their Company: {company.name}**")
        if company.category:
            parts.append(f"- Category: {company.category}")
        if company.description:
            parts.append(f"- What they do: {company.description}")
        if company.differentiators:
            parts.append(f"- Key differentiators: {company.differentiators}")
    else:
        parts.append("\n**Their Company: Unknown Company**")

    return "\n".join(parts)


class EmailGenerator:
    def __init__(
        self,
        api_key: Optional[str] = None,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        client=None,
    ):
        self.api_key = api_key if api_key is not None else settings.LLM_API_KEY
        self.provider = provider or settings.LLM_PROVIDER
        self.model = model or settings.LLM_MODEL
        self.base_url = base_url or settings.LLM_BASE_URL or DEFAULT_BASE_URLS.get(self.provider, DEFAULT_BASE_URLS["openai"])
        self.client = client
        if self.client is None and self.api_key:
            self.client = openai.OpenAI(api_key=self.api_key, base_url=self.base_url)
            logger.info(f"LLM client initialized for {self.provider} with model: {self.model}")

    def is_configured(self) -> bool:
        return self.client is not None

    def generate(
        self,
        campaign: Campaign,
        sender: SenderProfile,
        contact: Contact,
        company: Optional[Company] = None,
        events: Optional[List[Event]] = None,
    ) -> GeneratedEmail:
        if not self.is_configured():
            raise ServiceNotConfiguredException("LLM API key not configured. Set LLM_API_KEY.")

        messages = [
            {"role": "system", "content": build_system_prompt(campaign, sender, events)},
            {"role": "user", "content": build_user_prompt(contact, company)},
        ]
        try:
            completion = self.client.chat.completions.create(
                messages=messages,
                model=self.model,
                temperature=settings.LLM_TEMPERATURE,
                max_tokens=settings.LLM_MAX_TOKENS,
            )
        except openai.OpenAIError as e:
            logger.error(f"LLM generation failed for contact {contact.id}: {e}")
            raise LLMServiceException(f"Email generation failed: {e}") from e

        text = (completion.choices[0].message.content or "").strip()
        email = parse_generated_email(text)
        if not email.body:
            raise LLMServiceException("Email generation returned an empty body")
        return email
