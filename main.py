import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

import config
import database
import storage
from routes import bookings, cars, contracts, countries, dashboard, invoices, locations, notifications, users

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.connect():
        database.initialize()
    storage.ensure_dirs()
    yield
    database.close()


app = FastAPI(title="BookCars API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.WHITELISTED_DOMAINS or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"❌ Validation error on {request.method} {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=422, content={"detail": jsonable_errors(exc)})


def jsonable_errors(exc: RequestValidationError):
    return [{"loc": list(e.get("loc", [])), "msg": e.get("msg"), "type": e.get("type")} for e in exc.errors()]


@app.exception_handler(PyMongoError)
async def database_exception_handler(request: Request, exc: PyMongoError):
    logger.error(f"❌ Database error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=400, content={"detail": "Database error"})


for module in (users, countries, locations, cars, bookings, notifications, dashboard, contracts, invoices):
    app.include_router(module.router, prefix="/api")


# Health + DB test
@app.get("/")
def read_root():
    return {"message": "BookCars Backend Running"}


@app.get("/test")
def test_database():
    db = database.db
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available" if db is None else "✅ Connected & Working",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": db.name if db is not None else None,
        "collections": []
    }
    if db is not None:
        try:
            response["collections"] = db.list_collection_names()
        except PyMongoError as e:
            response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
