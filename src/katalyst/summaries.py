"""Mock AI meeting summaries.

No model is called. A summary is picked from fixed templates by hashing the
meeting id (sum of character codes), so the same meeting always gets the
same content.
"""

from __future__ import annotations

from collections.abc import Sequence

from katalyst.models import Meeting, MeetingSummary
from katalyst.timeutils import to_iso, utc_now

SUMMARY_TEMPLATES: tuple[dict[str, object], ...] = (
    {
        "summary": (
            "This meeting focused on project alignment and strategic planning. The team "
            "discussed key milestones, resource allocation, and upcoming deliverables."
        ),
        "key_points": [
            "Reviewed Q4 project milestones and deliverables",
            "Discussed resource allocation for upcoming sprint",
            "Aligned on communication protocols with stakeholders",
            "Identified potential risks and mitigation strategies",
        ],
        "action_items": [
            "Follow up with design team on mockups by Friday",
            "Schedule stakeholder review session next week",
            "Update project timeline in project management tool",
            "Prepare risk assessment document",
        ],
    },
    {
        "summary": (
            "A productive team sync covering progress updates, blocker resolution, and "
            "next quarter planning."
        ),
        "key_points": [
            "Sprint velocity increased by 15% this quarter",
            "Successfully resolved critical infrastructure issues",
            "New team member onboarding completed",
            "Client feedback incorporation strategy finalized",
        ],
        "action_items": [
            "Implement new testing framework by month-end",
            "Organize team building event for Q1",
            "Create documentation for new processes",
            "Schedule quarterly performance reviews",
        ],
    },
    {
        "summary": (
            "Weekly check-in focused on feature development progress and cross-team "
            "collaboration initiatives."
        ),
        "key_points": [
            "Feature development on track for beta release",
            "Cross-functional collaboration improved significantly",
            "User feedback analysis completed",
            "Technical debt reduction plan approved",
        ],
        "action_items": [
            "Coordinate with QA team for beta testing",
            "Implement user feedback in next iteration",
            "Schedule architecture review session",
            "Update deployment pipeline documentation",
        ],
    },
    {
        "summary": (
            "Strategic planning session covering market analysis, competitive positioning, "
            "and growth opportunities."
        ),
        "key_points": [
            "Market research findings presented and analyzed",
            "Competitive landscape assessment completed",
            "Growth strategy for next quarter outlined",
            "Budget allocation for new initiatives approved",
        ],
        "action_items": [
            "Finalize go-to-market strategy document",
            "Schedule customer interview sessions",
            "Prepare investor presentation for next board meeting",
            "Research new technology partnerships",
        ],
    },
    {
        "summary": (
            "Engineering retrospective focusing on process improvements, technical "
            "challenges, and team development."
        ),
        "key_points": [
            "Code review process efficiency improved",
            "Technical challenges in scaling addressed",
            "Team skill development plan created",
            "New tools and technologies evaluated",
        ],
        "action_items": [
            "Implement new code review guidelines",
            "Schedule technical training sessions",
            "Evaluate and pilot new development tools",
            "Create knowledge sharing initiative",
        ],
    },
)

_TEXT_TEMPLATES: tuple[str, ...] = (
    "This meeting focused on {title}. Key decisions were made regarding project timelines "
    "and resource allocation. The team agreed to follow up on action items within the next "
    "week.",
    "During this {title} session, participants discussed strategic planning and identified "
    "several opportunities for improvement. A follow-up meeting was scheduled to review "
    "progress.",
    "The {title} covered important updates on current initiatives. Team members shared "
    "progress reports and collaborated on solutions for identified challenges.",
    "This productive {title} session resulted in clear action items and next steps. The "
    "team demonstrated strong collaboration and problem-solving skills.",
    "The {title} meeting was well-attended with {count} participants. Key topics included "
    "project milestones, budget considerations, and stakeholder communication.",
)


def template_index(key: str, size: int = len(SUMMARY_TEMPLATES)) -> int:
    """Stable template choice: sum of the key's character codes modulo *size*."""
    return sum(ord(ch) for ch in key) % size


def generate_summary_text(title: str, attendees: Sequence[str]) -> str:
    """One-paragraph summary mentioning the meeting title."""
    template = _TEXT_TEMPLATES[template_index(title, len(_TEXT_TEMPLATES))]
    return template.format(title=title.lower(), count=len(attendees))


def generate_detailed_summary(title: str, attendees: Sequence[str], duration: int) -> str:
    """Markdown summary with discussion points, decisions and action items."""
    names = ", ".join(attendees[:3])
    if len(attendees) > 3:
        names += f" and {len(attendees) - 3} others"
    return f"""**Meeting Summary: {title}**

**Duration:** {duration} minutes
**Attendees:** {names}

**Key Discussion Points:**
• Project status updates and milestone tracking
• Resource allocation and budget considerations
• Risk assessment and mitigation strategies
• Next steps and action items

**Decisions Made:**
• Approved the proposed timeline for Q2 deliverables
• Allocated additional resources to high-priority tasks
• Scheduled follow-up meetings for ongoing initiatives

**Action Items:**
• Team leads to provide weekly progress reports
• Budget review meeting scheduled for next month
• Stakeholder communication plan to be finalized

**Next Meeting:** Follow-up session planned for next week to review progress on action items."""


def generate_mock_summary(meeting_id: str, meeting: Meeting | None = None) -> MeetingSummary:
    """Return the mock summary for *meeting_id*.

    When the meeting itself is known, ``details`` carries the markdown
    variant built from its title, attendees and duration.
    """
    if not meeting_id:
        raise ValueError("meeting_id must be non-empty")
    template = SUMMARY_TEMPLATES[template_index(meeting_id)]
    now = utc_now()
    details = None
    if meeting is not None:
        attendees = [a.name or a.email for a in meeting.attendees]
        details = generate_detailed_summary(meeting.title, attendees, meeting.duration)
    return MeetingSummary(
        id=f"summary-{meeting_id}-{int(now.timestamp() * 1000)}",
        meeting_id=meeting_id,
        summary=str(template["summary"]),
        key_points=list(template["key_points"]),  # type: ignore[call-overload]
        action_items=list(template["action_items"]),  # type: ignore[call-overload]
        created_at=to_iso(now),
        details=details,
    )
