"""Note templates: built-in defaults and placeholder substitution."""

import re
from datetime import datetime

from .model import Template

PLACEHOLDERS = ("{{date}}", "{{time}}", "{{day_of_week}}", "{{title}}")

_NON_ALNUM = re.compile(r"[^0-9a-z]+")

MEETING_NOTES = """# {{title}}

**Date:** {{date}} {{time}}

## Attendees

-

## Agenda

1.

## Notes

## Action Items

- [ ]
"""

DAILY_LOG = """# {{day_of_week}}, {{date}}

## Goals

- [ ]

## Done

-

## Reflections

"""

PROJECT_PLAN = """# {{title}}

Started {{date}}

## Goal

## Milestones

- [ ]

## Resources

## Risks

"""

DEFAULT_TEMPLATES: tuple[Template, ...] = (
    Template(
        id="meeting-notes",
        name="Meeting Notes",
        description="Structured template for meeting documentation",
        content=MEETING_NOTES,
        is_default=True,
    ),
    Template(
        id="daily-log",
        name="Daily Log",
        description="Track your daily goals, accomplishments, and reflections",
        content=DAILY_LOG,
        is_default=True,
    ),
    Template(
        id="project-plan",
        name="Project Plan",
        description="Plan and track project goals, timeline, and resources",
        content=PROJECT_PLAN,
        is_default=True,
    ),
)


def default_template(id: str) -> Template | None:
    for template in DEFAULT_TEMPLATES:
        if template.id == id:
            return template
    return None


def template_id(name: str) -> str:
    """
    Id derived from a template name.

    Examples:
        >>> template_id("  Weekly Review (v2) ")
        'weekly-review-v2'
    """
    return _NON_ALNUM.sub("-", name.casefold()).strip("-")


def render_template(content: str, when: datetime, title: str = "") -> str:
    """
    Replace {{date}}, {{time}}, {{day_of_week}} and {{title}}.

    Examples:
        >>> from datetime import datetime
        >>> render_template("# {{title}} ({{day_of_week}})", datetime(2024, 3, 1), "Standup")
        '# Standup (Friday)'
    """
    return (
        content.replace("{{date}}", when.strftime("%Y-%m-%d"))
        .replace("{{time}}", when.strftime("%H:%M"))
        .replace("{{day_of_week}}", when.strftime("%A"))
        .replace("{{title}}", title)
    )
