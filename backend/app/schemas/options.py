"""Option catalogs for the deterministic onboarding steps."""
from __future__ import annotations

from typing import Optional, Sequence, Tuple

from .form import FieldOption


def _options(*pairs: Tuple[str, str]) -> Tuple[FieldOption, ...]:
    return tuple(FieldOption(value=value, label=label) for value, label in pairs)


ROLE_OPTIONS = _options(
    ("eng", "Engineer"),
    ("pm", "Product Manager"),
    ("designer", "Designer"),
    ("data", "Data Analyst"),
    ("marketing", "Marketing"),
    ("sales", "Sales"),
    ("support", "Customer Support"),
    ("ops", "Operations"),
    ("exec", "Executive"),
    ("other", "Other"),
)

TEAM_SIZE_OPTIONS = _options(
    ("1", "Just me"),
    ("2-5", "2-5 people"),
    ("6-20", "6-20 people"),
    ("21-50", "21-50 people"),
    ("51-100", "51-100 people"),
    ("101-500", "101-500 people"),
    ("500+", "More than 500"),
)

USE_CASE_OPTIONS = _options(
    ("personal", "Personal Projects"),
    ("team", "Team Collaboration"),
    ("client", "Client Work"),
    ("education", "Education"),
    ("enterprise", "Enterprise"),
)

PROJECT_TYPE_OPTIONS = _options(
    ("software", "Software Development"),
    ("design", "Design & Creative"),
    ("marketing", "Marketing Campaigns"),
    ("operations", "Business Operations"),
    ("research", "Research & Development"),
    ("content", "Content Creation"),
    ("events", "Event Planning"),
    ("other", "Other"),
)

NOTIFICATION_OPTIONS = _options(
    ("email_updates", "Email updates"),
    ("email_mentions", "Email on mentions"),
    ("email_daily", "Daily digest"),
    ("push_desktop", "Desktop notifications"),
    ("push_mobile", "Mobile push notifications"),
    ("sms_urgent", "SMS for urgent items"),
)

FEATURE_OPTIONS = _options(
    ("ai_assist", "AI Assistant"),
    ("automation", "Workflow Automation"),
    ("integrations", "Third-party Integrations"),
    ("analytics", "Advanced Analytics"),
    ("api", "API Access"),
    ("custom_fields", "Custom Fields"),
    ("time_tracking", "Time Tracking"),
    ("resource_mgmt", "Resource Management"),
)

THEME_OPTIONS = _options(
    ("light", "Light"),
    ("dark", "Dark"),
    ("auto", "System Default"),
)


def option_label(options: Sequence[FieldOption], value: str) -> Optional[str]:
    for option in options:
        if option.value == value:
            return option.label
    return None
