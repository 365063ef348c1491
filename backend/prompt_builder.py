import json

SYSTEM_PROMPT = """You are an academic advisor assistant for a degree-planning tool.
You will receive a short, already ranked list of course recommendations for one student.
Eligibility, prerequisite checks, scores and ranking have already been decided.

Your job:
1. For each course in the list, write ONE short key reason (max 25 words) why it is a
   good next step for this student, referencing their major, tracks or minors when relevant
2. Do NOT reorder, add, or remove courses. Do NOT judge eligibility

Output ONLY a valid JSON array. No markdown. No prose outside the JSON.

Schema per item (output exactly this structure):
{
  "course_code": "...",
  "key_reason": "One sentence."
}"""


def build_prompt(recommendations, profile, target_semester: str | None = None) -> str:
    """
    Builds the user message sent to the LLM.
    The LLM only annotates the given recommendations; it never decides eligibility.
    """
    context_lines = []

    context_lines.append(f"Major: {profile.major or 'undeclared'}")
    if profile.tracks:
        context_lines.append(f"Tracks: {', '.join(profile.tracks)}")
    if profile.minors:
        context_lines.append(f"Minors: {', '.join(profile.minors)}")
    if target_semester:
        context_lines.append(f"Target semester: {target_semester}")
    context_lines.append(
        f"Return exactly {len(recommendations)} items, one per course below, in the same order."
    )
    context_lines.append("")
    context_lines.append("Ranked recommendations:")

    # Only what the model needs to explain each course
    llm_recs = []
    for rec in recommendations:
        llm_recs.append({
            "course_code": rec.course_code,
            "course_name": rec.course.title,
            "category": rec.category.value,
            "priority": rec.priority.value,
            "reasons": list(rec.reasons),
        })

    context_lines.append(json.dumps(llm_recs, indent=2))

    return "\n".join(context_lines)
