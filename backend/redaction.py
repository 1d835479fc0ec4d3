"""
College Planner -- Limited Report View
Derives what an unpaid visitor sees from the stored full plan.
"""

import copy
import math

# Share of timeline periods shown without an entitlement, rounded up.
TIMELINE_VISIBLE_RATIO = 0.6

UPSELL_NEXT_STEPS = [
    {
        "title": "Unlock 5 specific, immediately actionable next steps",
        "description": "Get the concrete actions to take in the next 30-60 days, ranked by impact on your applications.",
        "priority": "premium",
    },
    {
        "title": "See your complete application timeline",
        "description": "The full report covers every period through application season, including named programs and deadlines.",
        "priority": "premium",
    },
    {
        "title": "Get college recommendations and essay angles",
        "description": "Reach, target and safety schools with admission statistics, plus personalized essay topic suggestions.",
        "priority": "premium",
    },
]


def visible_period_count(total):
    return math.ceil(total * TIMELINE_VISIBLE_RATIO)


def redact(full):
    """
    Build the limited view of a full plan.

    The earliest periods of the timeline survive in order, so the partial
    timeline still reads chronologically. nextSteps is always swapped for
    the fixed upsell list, whatever the original held.
    """
    timeline = full.get('timeline') or []
    visible = visible_period_count(len(timeline))
    return {
        "overview": full.get('overview', ''),
        "timeline": copy.deepcopy(timeline[:visible]),
        "nextSteps": copy.deepcopy(UPSELL_NEXT_STEPS),
    }


def view_for(full, entitled):
    return full if entitled else redact(full)
