FOCUS_PROMPT_TEMPLATE = """You are a focus coach reviewing a screenshot of a knowledge worker's screen.

The worker's job title is: "{job_title}"
Their role: "{job_role}"

HINTS:

1. {hint_tools}
2. {hint_leisure}

On a scale of 1 to 10, how productive is this person being with respect to their job role?
1 means completely distracted and 10 means fully focused on work.

Answer with the score in square brackets first, for example "[7]", followed by one short sentence explaining why.
"""

HINT_TOOLS = (
    "Editors, terminals, documentation, spreadsheets, email and chat about work topics "
    "usually indicate productive work for this role."
)
HINT_LEISURE = (
    "Social media feeds, video streaming, shopping, games and news unrelated to the role "
    "usually indicate a distraction, even when they are only partly visible."
)


def build_focus_prompt(job_title: str, job_role: str) -> str:
    return FOCUS_PROMPT_TEMPLATE.format(
        job_title=job_title,
        job_role=job_role,
        hint_tools=HINT_TOOLS,
        hint_leisure=HINT_LEISURE,
    )
