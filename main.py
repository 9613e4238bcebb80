from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

import config
import database
import homes
import products
import users
from logger import log_error, log_startup, setup_logging
from responses import register_exception_handlers


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    log_startup()
    if database.db is not None:
        try:
            database.init_indexes(database.db)
        except Exception as e:
            log_error("Unable to ensure user indexes", e)
    yield


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(users.router)
app.include_router(products.router)
app.include_router(homes.router)
app.mount("/upload", StaticFiles(directory=config.UPLOAD_DIR, check_dir=False), name="upload")


# Health
@app.get("/")
def read_root():
    return {"success": True, "message": "Storefront API running"}


@app.get("/test")
def test_database():
    try:
        collections = database.db.list_collection_names() if database.db is not None else []
        return {
            "backend": "ok",
            "db": "ok" if database.db is not None else "not_configured",
            "collections": collections,
        }
    except Exception as e:
        return {"backend": "ok", "db": f"error: {str(e)[:80]}"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
