import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from costbasis.api.portfolio import router as portfolio_router
from costbasis.container import Container
from costbasis.db.session import init_db

logger = logging.getLogger("costbasis.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    container = Container()
    app.state.container = container
    await init_db(container.engine())
    yield
    await container.explorer_http().close()
    await container.price_http().close()
    await container.engine().dispose()


app = FastAPI(title="costbasis", version="0.1.0", lifespan=lifespan)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
    logger.error("Unhandled error on %s %s:\n%s", request.method, request.url.path, "".join(tb))
    return JSONResponse(status_code=500, content={"detail": str(exc)})


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(portfolio_router)
