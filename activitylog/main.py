"""Main FastAPI application entry point."""
import logging

from fastapi import FastAPI

from activitylog.database import engine, Base
from activitylog.api.routes import router
# Import models to register them with SQLAlchemy Base
from activitylog.models.activity import ActivityLog, ActivityLogDetail

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Create database tables
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Activity Log",
    description="Batched, grouped change history for tracked entities.",
    version="0.1.0"
)

app.include_router(router, prefix="/api", tags=["Activity Log"])


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "Activity Log"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
