import logging
from contextlib import asynccontextmanager
from datetime import timedelta

import uvicorn
from dotenv import load_dotenv
from fastapi import APIRouter, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from callscript import config
from callscript.classification import OpenAITier2Classifier, Tier2Classifier
from callscript.realtime import Broadcaster, CallScriptCoordinator
from callscript.session_manager import SessionManager
from callscript.store import SessionStore, SessionStoreError, SqlSessionStore

load_dotenv()

logging.basicConfig(
    level=config.log_level(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


class ActionRequest(BaseModel):
    action: str | None = None
    payload: dict = {}


class SimulateRequest(BaseModel):
    phone: str | None = None
    transcript: str | list[str] | None = None


class TranscriptRequest(BaseModel):
    text: str | None = None
    speaker: str = "inbound"


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def _default_tier2() -> Tier2Classifier | None:
    api_key = config.openai_api_key()
    if not config.use_tier2() or not api_key:
        return None
    return OpenAITier2Classifier(api_key=api_key)


def create_app(
    store: SessionStore | None = None,
    tier2: Tier2Classifier | None = None,
    start_cleanup: bool = True,
) -> FastAPI:
    """Build the API with its session manager and coordinator.

    Services are created here so they exist even when the ASGI lifespan is
    not run; the lifespan only opens storage and starts the cleanup loop.
    """
    store = store or SqlSessionStore(config.database_url())
    sessions = SessionManager(
        store,
        stale_after=timedelta(minutes=config.stale_session_minutes()),
        cleanup_interval=timedelta(minutes=config.cleanup_interval_minutes()),
        db_retention=timedelta(hours=config.db_retention_hours()),
    )
    tier2 = tier2 or _default_tier2()
    coordinator = CallScriptCoordinator(
        sessions,
        Broadcaster(),
        tier2=tier2,
        use_tier2=tier2 is not None,
        debounce_ms=config.classifier_debounce_ms(),
        tier1_min_confidence=config.tier1_min_confidence(),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        config.validate_config()
        try:
            await store.init()
        except SessionStoreError as e:
            logger.error("Session storage unavailable, running in memory only: %s", e)
        if start_cleanup:
            sessions.start()
        yield
        await sessions.stop_cleanup_interval()
        await coordinator.shutdown()
        await store.close()

    app = FastAPI(title="Call Script", lifespan=lifespan)
    app.state.store = store
    app.state.sessions = sessions
    app.state.coordinator = coordinator
    app.include_router(_routes())
    return app


def _routes() -> APIRouter:
    router = APIRouter()

    def coordinator_of(request: Request) -> CallScriptCoordinator:
        return request.app.state.coordinator

    @router.get("/health")
    async def health():
        return PlainTextResponse("ok")

    @router.get("/api/call-script/session/{call_id}")
    async def get_session(call_id: str, request: Request):
        coordinator = coordinator_of(request)
        machine = coordinator.get_machine(call_id)
        if machine is not None:
            return {"success": True, "active": True, "state": machine.to_json()}

        restored = await coordinator.sessions.restore_session(call_id)
        if restored is not None:
            return {"success": True, "active": False, "restored": True, "state": restored.to_json()}
        return _error(404, "Session not found")

    @router.post("/api/call-script/session/{call_id}/action")
    async def session_action(call_id: str, body: ActionRequest, request: Request):
        if not body.action:
            return _error(400, "Action is required")
        result = coordinator_of(request).handle_agent_action(call_id, body.action, body.payload)
        if not result["success"]:
            return _error(400, result.get("error") or "Action failed")
        return result

    @router.get("/api/call-script/sessions")
    async def list_sessions(request: Request):
        summaries = coordinator_of(request).get_active_session_summaries()
        return {"success": True, "count": len(summaries), "sessions": summaries}

    @router.get("/api/call-script/session/{call_id}/exists")
    async def session_exists(call_id: str, request: Request):
        return {"success": True, "exists": coordinator_of(request).has_call(call_id)}

    @router.delete("/api/call-script/session/{call_id}")
    async def end_session(call_id: str, request: Request):
        coordinator = coordinator_of(request)
        if await coordinator.end_call(call_id) is None and coordinator.sessions.has_session(call_id):
            await coordinator.sessions.end_session(call_id)
        return {"success": True, "message": f"Session {call_id} ended"}

    @router.post("/api/call-script/session/{call_id}/persist")
    async def persist_session(call_id: str, request: Request):
        sessions = coordinator_of(request).sessions
        if not sessions.has_session(call_id):
            return _error(404, "No active session found")
        try:
            await sessions.persist_session(call_id)
        except SessionStoreError as e:
            return _error(500, f"Failed to persist session: {e}")
        return {"success": True, "message": f"Session {call_id} persisted"}

    @router.post("/api/call-script/simulate")
    async def simulate(body: SimulateRequest, request: Request):
        try:
            call_id, machine = await coordinator_of(request).start_simulation(body.phone, body.transcript)
        except Exception:
            logger.exception("Error starting simulation")
            return _error(500, "Failed to start simulation")
        return {
            "success": True,
            "callId": call_id,
            "message": "Simulated call started",
            "state": machine.to_json(),
        }

    @router.post("/api/call-script/simulate/{call_id}/transcript")
    async def simulate_transcript(call_id: str, body: TranscriptRequest, request: Request):
        if not body.text:
            return _error(400, "Text is required")
        coordinator = coordinator_of(request)
        if not coordinator.add_simulated_chunk(call_id, body.text, body.speaker):
            return _error(404, "No active session found")
        return {"success": True, "state": coordinator.get_machine(call_id).to_json()}

    @router.websocket("/ws/call-script")
    async def call_script_websocket(websocket: WebSocket):
        await websocket.accept()
        broadcaster = websocket.app.state.coordinator.broadcaster
        broadcaster.connect(websocket)
        try:
            while True:
                # Clients only listen; anything they send is ignored
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            broadcaster.disconnect(websocket)

    return router


app = create_app()


if __name__ == "__main__":
    uvicorn.run("callscript.bot:app", host="0.0.0.0", port=config.port())
