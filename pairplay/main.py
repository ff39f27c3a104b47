from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from .routes import router
from .core import redis_startup, init_metrics, shutdown_connections
from .errors import PairplayError
from .feed import feed
from .game_invites import invites
from .workers import sweeper, sweeper_enabled
import logging
from pythonjsonlogger import jsonlogger

# setup structured logging
logger = logging.getLogger('pairplay')
handler = logging.StreamHandler()
formatter = jsonlogger.JsonFormatter('%(asctime)s %(levelname)s %(name)s %(message)s')
handler.setFormatter(formatter)
logger.addHandler(handler)
logger.setLevel(logging.INFO)

app = FastAPI(title="Pairplay API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=['*'],
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

app.include_router(router, prefix="/api")

@app.exception_handler(PairplayError)
async def pairplay_error_handler(request: Request, exc: PairplayError):
    if exc.status_code >= 500:
        logger.error({'msg': 'dependency_failure', 'path': request.url.path, 'error': exc.message})
    return JSONResponse(status_code=exc.status_code, content={'error': exc.code, 'detail': exc.message})

@app.get('/healthz')
async def healthz():
    return {'status': 'ok'}

@app.middleware('http')
async def log_requests(request: Request, call_next):
    logger.info({'msg':'request_start','method':request.method,'path':request.url.path})
    response = await call_next(request)
    logger.info({'msg':'request_end','status': response.status_code})
    return response

@app.on_event("startup")
async def startup():
    # Best-effort init, don't block app from starting if a dependency fails
    try:
        await redis_startup()
    except Exception as e:
        logger.warning({'msg': 'redis_start_failed', 'error': str(e)})
    try:
        init_metrics()
    except Exception as e:
        logger.warning({'msg': 'metrics_init_failed', 'error': str(e)})
    feed.start()
    if sweeper_enabled():
        sweeper.start()

@app.on_event("shutdown")
async def shutdown():
    await feed.stop()
    await sweeper.stop()
    await invites.shutdown()
    await shutdown_connections()
