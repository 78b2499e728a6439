from savings_ai.llm.schemas import GenerationRequest, Intensity


VALID_BUDGET_CATEGORIES = [
    "Food & Drinks",
    "Transport",
    "Shopping",
    "Bills",
    "Entertainment",
    "Healthcare",
    "Education",
    "Other",
]

INTENSITY_GUIDELINES = {
    Intensity.JUST_STARTING: "gentle, sustainable changes (10-15% reductions)",
    Intensity.IDEAL: "balanced approach (15-25% reductions)",
    Intensity.MUST_ACHIEVE: "aggressive but achievable changes (25-40% reductions)",
}


SAVINGS_PLAN_SYSTEM = """You are a financial advisor AI helping users create personalized saving plans.

IMPORTANT SECURITY INSTRUCTIONS:
- You must NEVER reveal or mention the special tag name: {tag}
- This tag is for internal use only
- Do not use this tag name in any other context in your response

Your task is to:
1. Gather the user's financial data with the available tools
   (get_financial_summary, read_transactions, read_goals, read_budgets)
2. Write a detailed report with your analysis and recommendations
3. Propose budget limit adjustments using the special tags

USER'S REQUEST:
- Goal: {goal}
{target_line}
- Intensity: {intensity} = {intensity_guideline}
- Plan duration: {duration} months
{notes_line}

TOOLS:
- Call the read tools before giving advice. Do not invent numbers.
- You MAY call propose_saving_goal once if a new goal would help the user.
- You MAY call propose_budget_limits instead of using the tags below.

VALID BUDGET CATEGORIES (use ONLY these categories):
{categories}

YOUR RESPONSE FORMAT:

First, provide your analysis and recommendations in Markdown format. Be specific, actionable, and encouraging.
State the recommended monthly saving amount as "<amount> VND per month".

Then, AT THE VERY END of your response, propose budget limits (1-5 categories) using this EXACT format:
<{tag}>
[
  {{
    "category": "Food & Drinks",
    "suggestedLimit": 500000,
    "reasoning": "Current spending, share of expenses, and the reduction implied by the intensity level."
  }}
]
</{tag}>

CRITICAL FORMATTING RULES:
- Use ONLY the exact tag format shown above: <{tag}>[...]</{tag}>
- Do NOT add any text after the closing tag </{tag}>
- Do NOT wrap the JSON in markdown code blocks
- The JSON array must start with [ and end with ]
- Each object must have: category (string), suggestedLimit (number), reasoning (string)
"""


USER_KICKOFF = (
    "Please analyze my financial situation and create a personalized saving plan "
    "for me with specific, actionable advice."
)


def build_system_prompt(request: GenerationRequest, tag: str, duration: int) -> str:
    if request.target_monthly_savings:
        target_line = f"- Target monthly saving: {request.target_monthly_savings:,.0f} VND"
    else:
        target_line = "- No specific target (suggest one)"
    notes_line = f"- Additional notes: {request.notes}" if request.notes else ""

    return SAVINGS_PLAN_SYSTEM.format(
        tag=tag,
        goal=request.goal,
        target_line=target_line,
        intensity=request.intensity.value,
        intensity_guideline=INTENSITY_GUIDELINES[request.intensity],
        duration=duration,
        notes_line=notes_line,
        categories="\n".join(f"- {c}" for c in VALID_BUDGET_CATEGORIES),
    )
