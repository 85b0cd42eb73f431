from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Tuple


@dataclass(frozen=True)
class ToolDefinition:
    id: str
    keywords: Tuple[str, ...]


def _tool(tool_id: str, *keywords: str) -> ToolDefinition:
    return ToolDefinition(id=tool_id, keywords=tuple(keywords))


# Catalog order is the match order for keyword extraction.
TOOL_DEFINITIONS: List[ToolDefinition] = [
    _tool("Slack", "slack"),
    _tool("Microsoft Teams", "microsoft teams", "ms teams", "teams"),
    _tool("Zoom", "zoom"),
    _tool("Google Meet", "google meet", "hangouts meet", "meet"),
    _tool("Notion", "notion"),
    _tool("Confluence", "confluence", "atlassian confluence"),
    _tool("Linear", "linear"),
    _tool("Jira", "jira"),
    _tool("Asana", "asana"),
    _tool("Trello", "trello"),
    _tool("ClickUp", "clickup", "click up"),
    _tool("Monday.com", "monday com", "monday.com", "monday"),
    _tool("Basecamp", "basecamp"),
    _tool("Airtable", "airtable"),
    _tool("Figma", "figma"),
    _tool("Miro", "miro", "realtimeboard", "real time board"),
    _tool("Lucidchart", "lucidchart", "lucid chart"),
    _tool("Dropbox", "dropbox"),
    _tool("Box", "box com", "box platform", "box cloud"),
    _tool("Google Drive", "google drive", "gdrive", "g drive"),
    _tool("OneDrive", "onedrive", "one drive"),
    _tool("GitHub", "github", "git hub"),
    _tool("GitLab", "gitlab", "git lab"),
    _tool("Bitbucket", "bitbucket", "bit bucket"),
    _tool("CircleCI", "circleci", "circle ci"),
    _tool("Jenkins", "jenkins"),
    _tool("PagerDuty", "pagerduty", "pager duty"),
    _tool("Datadog", "datadog", "data dog"),
    _tool("New Relic", "new relic"),
    _tool("Sentry", "sentry"),
    _tool("ServiceNow", "servicenow", "service now"),
    _tool("Zendesk", "zendesk"),
    _tool("Freshdesk", "freshdesk", "fresh desk"),
    _tool("Intercom", "intercom"),
    _tool("Salesforce", "salesforce", "sales force"),
    _tool("HubSpot", "hubspot", "hub spot"),
    _tool("Marketo", "marketo"),
    _tool("Mailchimp", "mailchimp", "mail chimp"),
    _tool("Amplitude", "amplitude"),
    _tool("Mixpanel", "mixpanel", "mix panel"),
    _tool("Segment", "segment", "twilio segment"),
    _tool("Snowflake", "snowflake"),
    _tool("Looker", "looker", "google looker"),
    _tool("Tableau", "tableau"),
    _tool("Power BI", "power bi", "powerbi"),
    _tool("Workday", "workday", "work day"),
    _tool("BambooHR", "bamboohr", "bamboo hr"),
    _tool("Okta", "okta"),
    _tool("Auth0", "auth0", "auth 0"),
    _tool("1Password", "1password", "onepassword", "1 password"),
    _tool("Other"),
]

TOOL_IDS = tuple(d.id for d in TOOL_DEFINITIONS)

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def sanitize_text(value: str) -> str:
    """Lowercase, replace punctuation with spaces and collapse whitespace."""
    lowered = _NON_ALNUM_RE.sub(" ", value.lower())
    return _WHITESPACE_RE.sub(" ", lowered).strip()


def _build_lookup() -> Dict[str, str]:
    lookup: Dict[str, str] = {}
    for definition in TOOL_DEFINITIONS:
        canonical = sanitize_text(definition.id)
        if canonical:
            lookup[canonical] = definition.id
        for keyword in definition.keywords:
            normalized = sanitize_text(keyword)
            if normalized:
                lookup[normalized] = definition.id
    return lookup


TOOL_LOOKUP: Dict[str, str] = _build_lookup()


def normalize_tool_name(name: str) -> str:
    return TOOL_LOOKUP.get(sanitize_text(name), "Other")
