from savings_ai.tools.registry import ToolContext, register


"""
Read tools over the user's finance data.

What it does:
- Delegates to the finance store scoped to the requesting user
- Never mutates anything
Main purpose:
Let the model look at real numbers before advising.
"""

@register(
    "read_transactions",
    "Read the user's transactions (income and expenses), most recent first. Returns up to 100 items.",
)
async def read_transactions(ctx: ToolContext) -> list:
    return await ctx.store.read_transactions(ctx.requester_id)


@register(
    "read_goals",
    "Read the user's saving goals including their targets, current progress, and priority.",
)
async def read_goals(ctx: ToolContext) -> list:
    return await ctx.store.read_goals(ctx.requester_id)


@register(
    "read_budgets",
    "Read the user's budget limits by category, including how much has been spent.",
)
async def read_budgets(ctx: ToolContext) -> list:
    return await ctx.store.read_budgets(ctx.requester_id)


@register(
    "get_financial_summary",
    "Get a financial summary: balance, total income, total expenses, saving rate and spending by category.",
)
async def get_financial_summary(ctx: ToolContext) -> dict:
    return await ctx.store.get_financial_summary(ctx.requester_id)
