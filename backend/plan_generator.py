"""
College Planner -- AI Plan Generator
Uses Claude to turn a student profile into a structured college application plan.
One attempt per request: the plan either parses or the request fails.
"""

import os
import re
import json
from datetime import datetime

from anthropic import Anthropic

from backend.errors import GenerationUnavailable

DEFAULT_MODEL = "claude-haiku-4-5-20251001"
DEFAULT_TIMEOUT_SECONDS = 60

# Curated programs the model may draw recommendations from.
REFERENCE_PROGRAMS = [
    "ArtEffect",
    "iGEM",
    "HOSA Future Health Professionals",
    "Wharton Global Youth Program",
    "AMC 10/12 and AIME",
    "YoungArts",
    "NYT Summer Academy",
    "Veritas AI Scholars",
    "Research Science Institute (RSI)",
    "Regeneron Science Talent Search",
    "Scholastic Art & Writing Awards",
    "Congressional App Challenge",
    "Model United Nations",
    "DECA",
    "National History Day",
    "Key Club community service",
]


def _profile_value(profile, key, default):
    value = profile.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    return value


def summarize_profile(profile):
    """
    Flatten a free-form profile into prompt-ready strings.
    Absent fields fall back to neutral defaults.
    """
    interests = profile.get("academicInterests")
    if isinstance(interests, list) and interests:
        interests_text = ", ".join(str(i) for i in interests)
    else:
        interests_text = _profile_value(profile, "intendedMajors", "Not specified")

    activities = profile.get("activities")
    if isinstance(activities, list):
        lines = [
            f"{a.get('name', '')}: {a.get('notes', '')}"
            for a in activities
            if isinstance(a, dict) and (a.get("name") or a.get("notes"))
        ]
        activities_text = "\n".join(lines) or "Not specified"
    else:
        activities_text = _profile_value(profile, "activities", "Not specified")

    return {
        "name": _profile_value(profile, "studentName", "Student"),
        "grade": _profile_value(profile, "currentGrade", "High School Student"),
        "school": _profile_value(profile, "highSchool", "High School"),
        "interests": interests_text,
        "activities": activities_text,
        "gpa_unweighted": _profile_value(profile, "gpaUnweighted", "Not provided"),
        "gpa_weighted": _profile_value(profile, "gpaWeighted", "Not provided"),
        "sat": _profile_value(profile, "satScore", "Not provided"),
        "act": _profile_value(profile, "actScore", "Not provided"),
        "toefl": _profile_value(profile, "toeflScore", "Not provided"),
        "courses": _profile_value(profile, "courseHistory", "Not provided"),
        "awards": _profile_value(profile, "awards", "None specified"),
        "additional": _profile_value(profile, "additionalInfo", ""),
    }


def build_prompt(profile, today=None):
    s = summarize_profile(profile)
    today = today or datetime.now().strftime('%Y-%m-%d')
    programs = ", ".join(REFERENCE_PROGRAMS)

    return f"""You are a professional college counselor generating a personalized and strategic college planning report for a student.
Today's date is {today}. Use it so every recommendation is timely; do not schedule anything in the past.

STUDENT PROFILE:
- Name: {s['name']}
- Grade: {s['grade']}
- High School: {s['school']}
- Academic Interests: {s['interests']}
- Extracurricular Activities:
{s['activities']}
- GPA (unweighted / weighted): {s['gpa_unweighted']} / {s['gpa_weighted']}
- SAT: {s['sat']}  ACT: {s['act']}  TOEFL/IELTS: {s['toefl']}
- Course History: {s['courses']}
- Awards: {s['awards']}
- Additional Info: {s['additional']}

If any information is missing, make reasonable assumptions based on the high school and grade level.

GUIDANCE:
- The student is from the U.S. or Taiwan. Recommend summer programs and opportunities realistically available to them.
- For GPA and SAT benchmarks, reference Common Data Set figures (25th, 50th, 75th percentile) for any school you name.
- Course advice should name specific AP courses, how many to take, and why.
- The Common App allows 10 activities and 5 awards. Spread real, named competitions and programs across the timeline, focusing on leadership, service, academic alignment, initiative and competitiveness.
- Prefer programs from this curated list where they fit: {programs}.
- Be honest but supportive. If the profile does not align with highly selective schools, say so and recommend better-fit options.
- Do not repeat the same point across sections.

IMPORTANT: Respond with ONLY valid JSON, no other text:
{{
    "overview": "Concise (max 100 words) summary of the student's academic position, strengths and readiness, with GPA and test score context",
    "timeline": [
        {{
            "period": "Spring 2026",
            "events": [
                {{
                    "title": "Apply to Veritas AI Scholars Program",
                    "category": "academics",
                    "description": "Why this matters for this student and what to do. Deadline: March 15.",
                    "deadline": "2026-03-15"
                }}
            ]
        }}
    ],
    "nextSteps": [
        {{
            "title": "Short action",
            "description": "Specific instructions for the next 30-60 days",
            "priority": "high"
        }}
    ]
}}

Start the timeline with the current season and include at least 6 periods spanning about 2 years, using Winter (Jan-Feb), Spring (Mar-May), Summer (Jun-Aug) and Fall (Sep-Dec).
Categories are one of: academics, extracurricular, testing, application, summer, essays.
List exactly 5 nextSteps, priority "high", "medium" or "low"."""


# ============================================================
# RESPONSE PARSING
# ============================================================

def _strip_code_fence(text):
    clean_text = text.strip()
    if "```json" in clean_text:
        start = clean_text.index("```json") + 7
        # Closing fence may be missing if the reply was truncated
        closing = clean_text.find("```", start)
        clean_text = clean_text[start:closing] if closing != -1 else clean_text[start:]
    elif clean_text.startswith("```"):
        start = clean_text.index("```") + 3
        closing = clean_text.find("```", start)
        clean_text = clean_text[start:closing] if closing != -1 else clean_text[start:]
    return clean_text.strip()


def _close_brackets(text):
    stack = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == '\\':
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch in '{[':
            stack.append('}' if ch == '{' else ']')
        elif ch in '}]' and stack:
            stack.pop()
    return text + ''.join(reversed(stack))


def _repair_truncated_json(clean_text):
    """
    Close a JSON object cut off by the token limit.
    Drops trailing items back to the last comma until the result parses.
    """
    if not clean_text.startswith("{") or clean_text.endswith("}"):
        return clean_text

    candidate = clean_text
    while candidate:
        closed = _close_brackets(candidate.rstrip().rstrip(','))
        try:
            json.loads(closed)
            return closed
        except ValueError:
            pass
        cut = candidate.rfind(',')
        if cut <= 0:
            break
        candidate = candidate[:cut]
    return clean_text


_TAG_RE = re.compile(r'<[^>]+>')
_OVERVIEW_RE = re.compile(r'<section[^>]*id="overview"[^>]*>([\s\S]*?)</section>', re.IGNORECASE)
_TIMELINE_DATA_RE = re.compile(r'<timeline-data>([\s\S]*?)</timeline-data>', re.IGNORECASE)
_NEXT_STEPS_RE = re.compile(r'<section[^>]*id="next-steps"[^>]*>([\s\S]*?)</section>', re.IGNORECASE)
_LIST_ITEM_RE = re.compile(r'<li[^>]*>([\s\S]*?)</li>', re.IGNORECASE)
_HEADING_RE = re.compile(r'<h[1-6][^>]*>[\s\S]*?</h[1-6]>', re.IGNORECASE)


def _plain(html_fragment):
    return re.sub(r'\s+', ' ', _TAG_RE.sub(' ', html_fragment)).strip()


def _from_html(text):
    """
    Normalize the older HTML layout (overview section, <timeline-data> JSON,
    next-steps list) into the structured shape.
    """
    timeline_match = _TIMELINE_DATA_RE.search(text)
    if not timeline_match:
        raise ValueError("No structured timeline found in HTML response")
    timeline = json.loads(timeline_match.group(1))

    overview = ""
    overview_match = _OVERVIEW_RE.search(text)
    if overview_match:
        overview = _plain(_HEADING_RE.sub('', overview_match.group(1)))

    next_steps = []
    steps_match = _NEXT_STEPS_RE.search(text)
    if steps_match:
        for item in _LIST_ITEM_RE.findall(steps_match.group(1)):
            next_steps.append({"title": _plain(item), "description": "", "priority": "high"})

    return {"overview": overview, "timeline": timeline, "nextSteps": next_steps}


def _normalize_event(event):
    if isinstance(event, str):
        return {"title": event, "category": "general", "description": ""}
    if not isinstance(event, dict):
        raise ValueError("Timeline event must be an object or string")
    normalized = {
        "title": str(event.get("title", "")),
        "category": str(event.get("category", "general")),
        "description": str(event.get("description", "")),
    }
    if event.get("deadline"):
        normalized["deadline"] = str(event["deadline"])
    return normalized


def _normalize_step(step):
    if isinstance(step, str):
        return {"title": step, "description": "", "priority": "high"}
    if not isinstance(step, dict):
        raise ValueError("Next step must be an object or string")
    return {
        "title": str(step.get("title", "")),
        "description": str(step.get("description", "")),
        "priority": str(step.get("priority", "medium")).lower(),
    }


def normalize_content(raw):
    """Coerce a parsed model reply into ReportContent, or raise ValueError."""
    if not isinstance(raw, dict):
        raise ValueError("Plan must be a JSON object")

    timeline = raw.get("timeline")
    if not isinstance(timeline, list) or not timeline:
        raise ValueError("Plan has no timeline")

    periods = []
    for period in timeline:
        if not isinstance(period, dict):
            raise ValueError("Timeline period must be an object")
        events = period.get("events") or period.get("tasks") or []
        if not isinstance(events, list):
            raise ValueError("Timeline events must be a list")
        periods.append({
            "period": str(period.get("period", "")),
            "events": [_normalize_event(e) for e in events],
        })

    steps = raw.get("nextSteps", raw.get("next_steps", []))
    if not isinstance(steps, list):
        raise ValueError("nextSteps must be a list")

    return {
        "overview": str(raw.get("overview", "")).strip(),
        "timeline": periods,
        "nextSteps": [_normalize_step(s) for s in steps],
    }


def parse_plan(response_text):
    """
    Turn raw model text into ReportContent.

    Raises:
        ValueError: when neither the JSON nor the HTML layout can be read
    """
    clean_text = _strip_code_fence(response_text)

    if clean_text.startswith("{"):
        return normalize_content(json.loads(_repair_truncated_json(clean_text)))

    if "<timeline-data>" in clean_text.lower():
        return normalize_content(_from_html(clean_text))

    # Model added prose around the object
    start, end = clean_text.find("{"), clean_text.rfind("}")
    if start != -1 and end > start:
        return normalize_content(json.loads(clean_text[start:end + 1]))

    raise ValueError("Response contained no plan")


# ============================================================
# GENERATION
# ============================================================

def ai_enabled():
    api_key = os.getenv("ANTHROPIC_API_KEY")
    return bool(api_key) and api_key != "your-anthropic-api-key-here"


def generate_plan(profile):
    """
    Generate a college application plan.

    Args:
        profile: free-form student profile dict

    Returns:
        dict in ReportContent shape (overview, timeline, nextSteps)

    Raises:
        GenerationUnavailable: no API key, API error or timeout, or an
            unparseable reply
    """
    if not ai_enabled():
        print("Plan generation skipped: no valid ANTHROPIC_API_KEY")
        raise GenerationUnavailable()

    timeout = float(os.getenv("PLAN_GENERATION_TIMEOUT", DEFAULT_TIMEOUT_SECONDS))

    try:
        client = Anthropic(api_key=os.getenv("ANTHROPIC_API_KEY"), timeout=timeout, max_retries=0)
        message = client.messages.create(
            model=os.getenv("ANTHROPIC_MODEL", DEFAULT_MODEL),
            max_tokens=6000,
            messages=[
                {"role": "user", "content": build_prompt(profile)}
            ]
        )
        response_text = message.content[0].text
    except Exception as e:
        print(f"Claude API error: {e}")
        raise GenerationUnavailable()

    try:
        return parse_plan(response_text)
    except (json.JSONDecodeError, ValueError) as parse_error:
        print(f"Plan parse error: {parse_error}")
        print(f"Raw response (first 300 chars): {response_text[:300]}")
        raise GenerationUnavailable()
