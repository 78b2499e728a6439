from fastapi import FastAPI
from savings_ai.api.routes import router, get_service
from savings_ai.db.session import init_db
import savings_ai.tools.finance
import savings_ai.tools.proposals


app = FastAPI(title="MoneyTrack Savings Planner API", version="0.1.0")
app.include_router(router, prefix="/v1")

@app.on_event("startup")
async def on_startup():
    await init_db()
    get_service()

@app.on_event("shutdown")
async def on_shutdown():
    await get_service().drain(timeout=30)
