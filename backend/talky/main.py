from dotenv import load_dotenv
load_dotenv()

import logging
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import accounts, config
from .admin_routes import router as admin_router
from .auth import auth_required, create_token, get_store
from .call_routes import router as calls_router
from .calls import CallService
from .chat_routes import router as chats_router
from .errors import TalkyError
from .models import User
from .schemas import CredentialsIn, ProfileUpdateIn, public_user
from .store import Store, build_store

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger("talky")


def create_app(store: Optional[Store] = None, calls: Optional[CallService] = None) -> FastAPI:
    app = FastAPI(title="Talky Backend")
    app.state.store = store or build_store()
    app.state.calls = calls or CallService(app.state.store)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=True,
    )

    @app.exception_handler(TalkyError)
    async def _talky_error(request: Request, exc: TalkyError):
        return JSONResponse(status_code=exc.status, content={"error": exc.reason, "kind": exc.kind})

    @app.on_event("shutdown")
    def _shutdown():
        logger.info("flushing pending writes")
        app.state.store.close()

    @app.get("/health")
    def health():
        return {"ok": True, "pendingWrites": app.state.store.serializer.pending}

    @app.post("/api/auth/signup", status_code=201)
    def signup(data: CredentialsIn, store: Store = Depends(get_store)):
        user = accounts.signup(store, data.username, data.password)
        return {"token": create_token(user.id), "user": public_user(user)}

    @app.post("/api/auth/login")
    def login(data: CredentialsIn, store: Store = Depends(get_store)):
        user = accounts.login(store, data.username, data.password)
        return {"token": create_token(user.id), "user": public_user(user)}

    @app.post("/api/auth/logout")
    def logout(me: User = Depends(auth_required)):
        # tokens are stateless; the client drops its copy
        return {"ok": True}

    @app.get("/api/me")
    def get_me(me: User = Depends(auth_required)):
        return {"user": public_user(me)}

    @app.patch("/api/me")
    def update_me(data: ProfileUpdateIn, me: User = Depends(auth_required),
                  store: Store = Depends(get_store)):
        user = accounts.update_user(store, me.id, username=data.username, password=data.password)
        return {"user": public_user(user)}

    @app.get("/api/users")
    def list_users(me: User = Depends(auth_required), store: Store = Depends(get_store)):
        return {"users": [public_user(u) for u in accounts.list_users(store, exclude_id=me.id)]}

    app.include_router(chats_router)
    app.include_router(calls_router)
    app.include_router(admin_router)
    return app


app = create_app()


if __name__ == "__main__":
    import os
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
