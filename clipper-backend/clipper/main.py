from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clipper.core.settings import settings
from clipper.api.router import router
from clipper.db.session import engine
from clipper.db.base import Base
import clipper.models  # noqa: F401  (registers tables on Base.metadata)

app = FastAPI(title="Clipper Payout Backend", version="0.1.0")

origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    # Every failure response carries a single `error` string
    first = exc.errors()[0] if exc.errors() else {}
    return JSONResponse(status_code=400, content={"error": f"Invalid request: {first.get('msg', 'bad input')}"})


Base.metadata.create_all(bind=engine)

app.include_router(router)
