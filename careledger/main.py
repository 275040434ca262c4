"""FastAPI application for the CareLedger backend."""

from __future__ import annotations

import logging
from datetime import date

from fastapi import FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse

from careledger import bill_service, chat_service, insurance_service, profile_service
from careledger.config import LOG_LEVEL, USE_SUPABASE
from careledger.cost_aggregator import aggregate_costs
from careledger.dashboard import build_dashboard
from careledger.errors import AnalysisFailed, InvalidInput, NoActivePolicy, OperationTimeout, UploadFailed
from careledger.llm_adapters.gemini_adapter import GeminiGateway, NotConfigured
from careledger.models import (
	ChatRequest,
	InvokeRequest,
	ProfileUpdateRequest,
	SessionStartRequest,
	StatusUpdateRequest,
)
from careledger.recalculate import recalculate_all
from careledger.state import AppState, SessionRegistry, StateFactory

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
LOGGER = logging.getLogger(__name__)

VERSION = "0.1.0"
AI_UNAVAILABLE = "AI service unavailable"


def _default_factory(gateway: GeminiGateway) -> StateFactory:
	"""Build per-user states over the configured store backend."""

	if USE_SUPABASE:
		from careledger.store_adapters.supabase_adapter import SupabaseDocumentStore, SupabaseRecordStore

		records, documents = SupabaseRecordStore(), SupabaseDocumentStore()
	else:
		from careledger.store_adapters.local_adapter import LocalDocumentStore, LocalRecordStore

		records, documents = LocalRecordStore(), LocalDocumentStore()

	def factory(user_id: str) -> AppState:
		return AppState(user_id=user_id, records=records, documents=documents, gateway=gateway)

	return factory


def _http_error(exc: Exception) -> HTTPException:
	"""Translate service exceptions into HTTP errors without leaking provider text."""

	if isinstance(exc, KeyError):
		return HTTPException(status_code=404, detail=str(exc.args[0]) if exc.args else "not found")
	if isinstance(exc, NoActivePolicy):
		return HTTPException(status_code=409, detail=str(exc))
	if isinstance(exc, NotConfigured):
		return HTTPException(status_code=503, detail=AI_UNAVAILABLE)
	if isinstance(exc, OperationTimeout):
		return HTTPException(status_code=504, detail=str(exc))
	if isinstance(exc, (UploadFailed, AnalysisFailed)):
		return HTTPException(status_code=502, detail=str(exc))
	if isinstance(exc, InvalidInput):
		return HTTPException(status_code=400, detail=str(exc))
	LOGGER.exception("Unhandled service error")
	return HTTPException(status_code=500, detail="internal error")


_SERVICE_ERRORS = (
	KeyError,
	ValueError,
	NoActivePolicy,
	NotConfigured,
	OperationTimeout,
	UploadFailed,
	AnalysisFailed,
)


app = FastAPI(title="CareLedger", version=VERSION)

app.add_middleware(
	CORSMiddleware,
	allow_origins=["*"],
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)

app.state.gateway = GeminiGateway()
app.state.sessions = SessionRegistry(_default_factory(app.state.gateway))


def _session(request: Request, user_id: str | None) -> AppState:
	return request.app.state.sessions.get(user_id)


@app.get("/", include_in_schema=False)
def root() -> RedirectResponse:
	"""Redirect callers to the interactive documentation."""
	return RedirectResponse(url="/docs")


@app.get("/health")
async def health_check() -> dict[str, object]:
	"""Return readiness metadata for external monitors."""
	return {"ok": True, "service": "CareLedger", "version": VERSION, "backend": "supabase" if USE_SUPABASE else "local"}


@app.post("/session/start")
async def session_start(payload: SessionStartRequest, request: Request) -> dict[str, object]:
	"""Load the user's rows into a fresh application state."""

	state = await request.app.state.sessions.start(payload.user_id)
	return {
		"user_id": state.user_id,
		"bills": len(state.bills),
		"insurance_documents": len(state.insurance_docs),
		"chat_messages": len(state.chat_history),
	}


@app.post("/session/end")
async def session_end(request: Request, user_id: str = Query(...)) -> dict[str, object]:
	ended = request.app.state.sessions.end(user_id)
	if not ended:
		raise HTTPException(status_code=404, detail="session not found")
	return {"status": "ended", "user_id": user_id}


# --- Bills ----------------------------------------------------------------


@app.get("/bills")
async def bills_list(request: Request, user_id: str = Query(...)) -> dict[str, object]:
	state = _session(request, user_id)
	return {"bills": bill_service.list_bills(state)}


@app.post("/bills")
async def bills_add(
	request: Request,
	user_id: str = Query(...),
	hospital_name: str | None = Form(None),
	bill_date: str | None = Form(None),
	amount: str | None = Form(None),
	description: str | None = Form(None),
	file: UploadFile | None = File(None),
) -> dict[str, object]:
	"""Create a bill from manual fields, an uploaded file, or both."""

	state = _session(request, user_id)
	content: bytes | None = None
	filename: str | None = None
	content_type: str | None = None
	if file is not None and file.filename:
		content = await file.read()
		filename = file.filename
		content_type = file.content_type

	try:
		bill = await bill_service.add_bill(
			state,
			hospital_name=hospital_name,
			bill_date=bill_date,
			amount=amount,
			description=description,
			filename=filename,
			content=content,
			content_type=content_type,
		)
	except _SERVICE_ERRORS as exc:
		raise _http_error(exc) from exc
	return {"bill": bill}


@app.patch("/bills/{bill_id}/status")
async def bills_status(
	bill_id: str,
	payload: StatusUpdateRequest,
	request: Request,
	user_id: str = Query(...),
) -> dict[str, object]:
	state = _session(request, user_id)
	try:
		bill = await bill_service.update_bill_status(state, bill_id, payload.status)
	except _SERVICE_ERRORS as exc:
		raise _http_error(exc) from exc
	return {"bill": bill}


@app.post("/bills/{bill_id}/analyze")
async def bills_analyze(bill_id: str, request: Request, user_id: str = Query(...)) -> dict[str, object]:
	"""Run the detailed analysis for one bill against the active policy."""

	state = _session(request, user_id)
	try:
		bill = await bill_service.analyze_bill_on_demand(state, bill_id)
	except _SERVICE_ERRORS as exc:
		raise _http_error(exc) from exc
	return {"bill": bill}


@app.delete("/bills/{bill_id}")
async def bills_delete(bill_id: str, request: Request, user_id: str = Query(...)) -> dict[str, object]:
	state = _session(request, user_id)
	try:
		await bill_service.delete_bill(state, bill_id)
	except _SERVICE_ERRORS as exc:
		raise _http_error(exc) from exc
	return {"status": "deleted", "bill_id": bill_id}


# --- Insurance documents --------------------------------------------------


@app.get("/insurance")
async def insurance_list(request: Request, user_id: str = Query(...)) -> dict[str, object]:
	state = _session(request, user_id)
	return {"documents": insurance_service.list_documents(state)}


@app.post("/insurance")
async def insurance_upload(
	request: Request,
	user_id: str = Query(...),
	document_type: str = Form(...),
	file: UploadFile = File(...),
) -> dict[str, object]:
	"""Upload an insurance document; genuine policies are approved and analyzed."""

	state = _session(request, user_id)
	content = await file.read()
	try:
		doc = await insurance_service.upload_document(
			state,
			document_type,
			file.filename or "upload",
			content,
			file.content_type,
		)
	except _SERVICE_ERRORS as exc:
		raise _http_error(exc) from exc
	return {"document": doc}


@app.patch("/insurance/{doc_id}/status")
async def insurance_status(
	doc_id: str,
	payload: StatusUpdateRequest,
	request: Request,
	user_id: str = Query(...),
) -> dict[str, object]:
	state = _session(request, user_id)
	try:
		doc = await insurance_service.update_document_status(state, doc_id, payload.status)
	except _SERVICE_ERRORS as exc:
		raise _http_error(exc) from exc
	return {"document": doc}


@app.post("/insurance/{doc_id}/analyze")
async def insurance_analyze(doc_id: str, request: Request, user_id: str = Query(...)) -> dict[str, object]:
	state = _session(request, user_id)
	try:
		doc = await insurance_service.analyze_document_on_demand(state, doc_id)
	except _SERVICE_ERRORS as exc:
		raise _http_error(exc) from exc
	return {"document": doc}


@app.delete("/insurance/{doc_id}")
async def insurance_delete(doc_id: str, request: Request, user_id: str = Query(...)) -> dict[str, object]:
	state = _session(request, user_id)
	try:
		await insurance_service.delete_document(state, doc_id)
	except _SERVICE_ERRORS as exc:
		raise _http_error(exc) from exc
	return {"status": "deleted", "doc_id": doc_id}


# --- Predictions and dashboard --------------------------------------------


@app.get("/predictions/summary")
async def predictions_summary(request: Request, user_id: str = Query(...)) -> dict[str, object]:
	"""Cost totals plus the policy the predictions are based on."""

	state = _session(request, user_id)
	policy = insurance_service.active_policy(state.insurance_docs)
	overview = policy.analysis().overview if policy is not None else None
	return {
		"summary": aggregate_costs(state.bills),
		"active_policy": None
		if policy is None
		else {
			"id": policy.id,
			"insurer_name": overview.insurer_name if overview else None,
			"policy_number": overview.policy_number if overview else None,
			"summary": overview.summary if overview else "",
		},
	}


@app.post("/predictions/recalculate")
async def predictions_recalculate(request: Request, user_id: str = Query(...)) -> dict[str, object]:
	"""Re-analyze every bill against the active policy, one at a time."""

	state = _session(request, user_id)

	def _log_progress(current: int, total: int) -> None:
		LOGGER.info("Recalculating (%s/%s) for %s", current, total, user_id)

	try:
		report = await recalculate_all(state, progress=_log_progress)
	except _SERVICE_ERRORS as exc:
		raise _http_error(exc) from exc
	return {"report": report, "summary": aggregate_costs(state.bills)}


@app.get("/dashboard")
async def dashboard(request: Request, user_id: str = Query(...)) -> dict[str, object]:
	state = _session(request, user_id)
	return build_dashboard(state.bills, state.insurance_docs, today=date.today())


# --- Chat -----------------------------------------------------------------


@app.get("/chat")
async def chat_history(request: Request, user_id: str = Query(...)) -> dict[str, object]:
	state = _session(request, user_id)
	return {"messages": state.chat_history}


@app.post("/chat")
async def chat_send(payload: ChatRequest, request: Request, user_id: str = Query(...)) -> dict[str, object]:
	"""Persist the user's message and the assistant's reply."""

	state = _session(request, user_id)
	try:
		user_message, bot_message = await chat_service.send_message(state, payload.message)
	except _SERVICE_ERRORS as exc:
		raise _http_error(exc) from exc
	return {"message": user_message, "reply": bot_message}


@app.delete("/chat")
async def chat_clear(request: Request, user_id: str = Query(...)) -> dict[str, object]:
	state = _session(request, user_id)
	removed = await chat_service.clear_history(state)
	return {"status": "cleared", "removed": removed}


# --- Profile --------------------------------------------------------------


@app.get("/profile")
async def profile_get(request: Request, user_id: str = Query(...)) -> dict[str, object]:
	state = _session(request, user_id)
	profile = await profile_service.get_profile(state.records, state.user_id)
	if profile is None:
		raise HTTPException(status_code=404, detail="profile not found")
	return {"profile": profile}


@app.put("/profile")
async def profile_put(
	payload: ProfileUpdateRequest,
	request: Request,
	user_id: str = Query(...),
) -> dict[str, object]:
	state = _session(request, user_id)
	try:
		profile = await profile_service.save_profile(state.records, state.user_id, payload)
	except _SERVICE_ERRORS as exc:
		raise _http_error(exc) from exc
	return {"profile": profile}


# --- AI relay -------------------------------------------------------------


@app.post("/ai/invoke")
async def ai_invoke(payload: InvokeRequest, request: Request) -> dict[str, object]:
	"""Forward a prompt (and optional inline document) to the model and return its text."""

	if not payload.prompt.strip() and payload.image is None:
		raise HTTPException(status_code=400, detail="prompt is required")
	try:
		text = await request.app.state.gateway.invoke(payload.prompt, image=payload.image, history=payload.history)
	except NotConfigured as exc:
		LOGGER.error("AI relay not configured: %s", exc)
		raise HTTPException(status_code=503, detail=AI_UNAVAILABLE) from exc
	except Exception as exc:
		LOGGER.error("AI relay call failed: %s", exc)
		raise HTTPException(status_code=502, detail="AI request failed") from exc
	return {"text": text}
