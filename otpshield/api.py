"""
otpshield/api.py
─────────────────────────────────────────────────────────────────────────────
OTPShield — Dual-mode API layer

TWO USAGE MODES:
  1. Importable module (app UI layer):
         from otpshield.api import OTPShieldAPI
         with OTPShieldAPI(db_path=Path("otpshield.db")) as api:
             result = api.process_message("HDFCBK: 123456 is your OTP.")
             trust  = api.get_trust_score("HDFCBK")

  2. FastAPI HTTP server (local UI via fetch()):
         python -m otpshield.api                   # default: port 8765
         python -m otpshield.api --port 9000
         uvicorn otpshield.api:app --port 8765

ENDPOINTS:
  POST /messages/analyze          — analyze one SMS, optionally update sender trust
  GET  /messages/history          — last 10 OTP analyses
  POST /messages/report           — user-reported message → sender trust view
  GET  /senders/{sender_id}       — sender trust record + tier
  POST /senders/{sender_id}/feedback
  POST /calls                     — record a call, recompute number trust
  GET  /calls/history             — call history (optional ?phone=)
  GET  /calls/{number}            — call trust record + tier
  POST /calls/{number}/feedback   — rate-limited; 429 + cooldown body on rejection
  GET  /calls/{number}/feedback   — stored feedback events
  GET  /lookup/{number}           — merged call/SMS view for number search
  GET  /tiers                     — trust tier taxonomy
  GET  /health

PRIVACY NOTE:
  All state stays in the local SQLite file. The server binds to 127.0.0.1.
  Message bodies and OTP values are never logged.
"""

from __future__ import annotations

import logging
import threading
from contextlib import asynccontextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from otpshield.config import DEFAULT_CONFIG, load_config
from otpshield.detectors.keyword_detector import classify_message
from otpshield.detectors.otp_extractor import extract_phone_number
from otpshield.models.record import RateLimitRejection
from otpshield.scorer.message_risk import MessageRiskEngine
from otpshield.simulation import LocationProvider, RandomLocationProvider
from otpshield.store.kv_store import KeyValueStore, StorageError
from otpshield.trust.base import Clock
from otpshield.trust.call_trust import CallTrustStore
from otpshield.trust.keys import (
    UNKNOWN_KEY,
    format_phone_number,
    normalize_phone_number,
    normalize_sender_id,
)
from otpshield.trust.sender_trust import BehaviourSignals, SenderTrustStore
from otpshield.trust.tiers import TRUST_STATUS, trust_status

logger = logging.getLogger(__name__)

VERSION = "1.0.0"
CALL_DIRECTIONS = ("incoming", "outgoing")


# ═══════════════════════════════════════════════════════════════════════════
# IMPORTABLE CLASS: UI layer interface
# ═══════════════════════════════════════════════════════════════════════════

class OTPShieldAPI:
    """
    Facade over the risk engine and both trust stores.
    All methods return plain dicts (JSON-ready) with a "status" tier
    attached to every trust record.

    The underlying store opens lazily on first use; call close() (or use
    the context manager) to release the SQLite handle.
    """

    def __init__(
        self,
        db_path:           Optional[Union[Path, str]]    = None,
        config:            Optional[Dict[str, Any]]      = None,
        location_provider: Optional[LocationProvider]    = None,
        signals:           Optional[BehaviourSignals]    = None,
        clock:             Optional[Clock]               = None,
    ):
        self.config = {**DEFAULT_CONFIG, **(config or {})}
        self.db_path = db_path or self.config["db_path"]

        self.kv = KeyValueStore(self.db_path)
        self.senders = SenderTrustStore(self.kv, signals=signals, clock=clock)
        self.calls = CallTrustStore(
            self.kv,
            self.senders,
            cooldown_days   = int(self.config["rating_cooldown_days"]),
            history_limit   = int(self.config["call_history_limit"]),
            default_user_id = self.config["default_user_id"],
            clock           = clock,
        )
        self.engine = MessageRiskEngine(
            trusted_senders   = self.config["trusted_senders"],
            location_provider = location_provider or RandomLocationProvider(
                unusual_probability=float(self.config["unusual_location_probability"]),
            ),
            history_limit     = int(self.config["analysis_history_limit"]),
            default_device_id = self.config["default_device_id"],
        )
        self._opened = False
        self._open_lock = threading.Lock()

    # ── LIFECYCLE ─────────────────────────────────────────────────────────

    def open(self) -> "OTPShieldAPI":
        with self._open_lock:
            if self._opened:
                return self
            try:
                self.kv.open()
            except StorageError as e:
                logger.error(f"Store unavailable — running in memory only: {e}")
            self.senders.open()
            self.calls.open()
            self._opened = True
        return self

    def close(self) -> None:
        with self._open_lock:
            self.kv.close()
            self._opened = False

    def __enter__(self) -> "OTPShieldAPI":
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()

    def _ensure_open(self) -> None:
        if not self._opened:
            self.open()

    # ── HELPERS ───────────────────────────────────────────────────────────

    @staticmethod
    def _trust_view(record, **extra) -> Dict[str, Any]:
        d = asdict(record)
        d["status"] = asdict(trust_status(record.score))
        d.update(extra)
        return d

    # ── MESSAGES ──────────────────────────────────────────────────────────

    def analyze_message(
        self,
        message:   Optional[str],
        device_id: Optional[str] = None,
        sender_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Risk-score one message. Does not touch trust stores."""
        return asdict(self.engine.analyze_message(message, device_id=device_id, sender_id=sender_id))

    def process_message(
        self,
        message:   Optional[str],
        device_id: Optional[str] = None,
        sender_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Analyze a message and, when it carries an OTP, fold the result into
        the sender's trust score. Non-OTP messages, and messages whose
        sender was synthesized (no header, no sender_id), leave trust unchanged.
        """
        self._ensure_open()
        result = self.engine.analyze_message(message, device_id=device_id, sender_id=sender_id)
        sender_trust = None
        if result.is_otp_message and not result.sender_synthesized:
            record = self.senders.apply_message(result.sender_id, result)
            sender_trust = self._trust_view(record, sender_id=normalize_sender_id(result.sender_id))
        return {"analysis": asdict(result), "sender_trust": sender_trust}

    def get_analysis_history(self) -> List[Dict[str, Any]]:
        return [asdict(r) for r in self.engine.history()]

    def report_message(
        self,
        message:      str,
        phone_number: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        User-submitted suspicious message. The sender number comes from the
        argument or, failing that, from the message text.
        Raises ValueError when there is no message or no number.
        """
        if not message or not message.strip():
            raise ValueError("Please enter a message to report")
        raw_number = phone_number or extract_phone_number(message)
        if not raw_number:
            raise ValueError("No phone number found in message — provide one explicitly")

        number = normalize_phone_number(raw_number)
        if number == UNKNOWN_KEY:
            raise ValueError(f"Not a phone number: {raw_number!r}")

        self._ensure_open()
        classification = classify_message(message, self.engine.trusted_senders)
        result = self.engine.analyze_message(message, sender_id=number)

        if result.is_otp_message:
            record = self.senders.apply_message(number, result)
        else:
            record = self.senders.get_or_create(number)

        return self._trust_view(
            record,
            phone_number     = number,
            formatted_number = format_phone_number(number),
            analysis         = asdict(result),
            classification   = asdict(classification),
            report_score     = 0.2 if classification.is_phishing else 0.8,
            data_source      = "reported",
        )

    # ── SENDERS ───────────────────────────────────────────────────────────

    def get_trust_score(self, sender_id: Optional[str]) -> Dict[str, Any]:
        self._ensure_open()
        record = self.senders.get_or_create(sender_id)
        return self._trust_view(record, sender_id=normalize_sender_id(sender_id))

    def record_sender_feedback(
        self,
        sender_id:     Optional[str],
        feedback_type: str,
        user_id:       Optional[str] = None,
    ) -> Dict[str, Any]:
        self._ensure_open()
        record = self.senders.apply_feedback(
            sender_id, feedback_type, user_id=user_id or self.config["default_user_id"],
        )
        return self._trust_view(record, sender_id=normalize_sender_id(sender_id))

    # ── CALLS ─────────────────────────────────────────────────────────────

    def get_call_trust_score(self, phone_number: Optional[str]) -> Dict[str, Any]:
        self._ensure_open()
        record = self.calls.get_or_create(phone_number)
        return self._trust_view(record, phone_number=normalize_phone_number(phone_number))

    def record_call(
        self,
        phone_number: Optional[str],
        duration:     float         = 0,
        direction:    str           = "incoming",
        was_answered: bool          = False,
        timestamp:    Optional[str] = None,
    ) -> Dict[str, Any]:
        """Raises ValueError on an unknown direction or negative duration."""
        if direction not in CALL_DIRECTIONS:
            raise ValueError(f"direction must be one of {CALL_DIRECTIONS}: {direction!r}")
        if duration is not None and duration < 0:
            raise ValueError(f"duration must be >= 0: {duration}")
        self._ensure_open()
        call = self.calls.record_call(
            phone_number,
            duration     = duration,
            direction    = direction,
            was_answered = was_answered,
            timestamp    = timestamp,
        )
        return asdict(call)

    def record_call_feedback(
        self,
        phone_number:  Optional[str],
        feedback_type: str,
        user_id:       Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Trust view on success. On cooldown returns
        {"error": True, "message": ..., "cooldown_remaining": N} — check for
        the "error" key rather than catching an exception.
        """
        self._ensure_open()
        result = self.calls.record_user_feedback(phone_number, feedback_type, user_id=user_id)
        if isinstance(result, RateLimitRejection):
            return asdict(result)
        return self._trust_view(result, phone_number=normalize_phone_number(phone_number))

    def get_call_history(self, phone_number: Optional[str] = None) -> List[Dict[str, Any]]:
        self._ensure_open()
        return [asdict(c) for c in self.calls.get_call_history(phone_number)]

    def get_call_feedback(self, phone_number: Optional[str]) -> List[Dict[str, Any]]:
        self._ensure_open()
        return [asdict(e) for e in self.calls.get_feedback(phone_number)]

    def lookup_number(self, phone_number: Optional[str]) -> Dict[str, Any]:
        """
        Number search: call-derived trust when the number has call data,
        else SMS-derived sender trust when it has messages, else a new
        number. data_source is "calls", "sms" or "new".
        """
        number = normalize_phone_number(phone_number)
        if number == UNKNOWN_KEY:
            raise ValueError("Please enter a valid phone number to search")

        self._ensure_open()
        call = self.calls.get_or_create(number)
        view = self._trust_view(call)

        if call.call_count > 0 or self.calls.get_feedback(number):
            view["data_source"] = "calls"
        else:
            sender = self.senders.get_or_create(number)
            if sender.message_count > 0:
                view.update(
                    score         = sender.score,
                    status        = asdict(trust_status(sender.score)),
                    last_updated  = sender.last_updated,
                    message_count = sender.message_count,
                    data_source   = "sms",
                )
            else:
                view["data_source"] = "new"

        view["phone_number"] = number
        view["formatted_number"] = format_phone_number(number)
        return view

    # ── TIERS ─────────────────────────────────────────────────────────────

    @staticmethod
    def trust_status(score: float) -> Dict[str, Any]:
        return asdict(trust_status(score))

    @staticmethod
    def tiers() -> List[Dict[str, Any]]:
        return [asdict(s) for s in TRUST_STATUS.values()]


# ═══════════════════════════════════════════════════════════════════════════
# FASTAPI HTTP APP
# ═══════════════════════════════════════════════════════════════════════════

class AnalyzeRequest(BaseModel):
    message:      str
    device_id:    Optional[str] = None
    sender_id:    Optional[str] = None
    update_trust: bool = True


class ReportRequest(BaseModel):
    message:      str
    phone_number: Optional[str] = None


class FeedbackRequest(BaseModel):
    feedback_type: str = Field(..., min_length=1, description="safe, suspicious or scam")
    user_id:       Optional[str] = None


class CallRequest(BaseModel):
    phone_number: str
    duration:     float = 0
    direction:    str = "incoming"
    was_answered: bool = False
    timestamp:    Optional[str] = None


def _build_app(
    db_path: Optional[Union[Path, str]] = None,
    config:  Optional[Dict[str, Any]]   = None,
    api:     Optional[OTPShieldAPI]     = None,
) -> FastAPI:
    """
    Build the FastAPI application. Pass api to serve an existing facade
    (tests inject one with a fixed location provider and clock).
    """
    _api = api or OTPShieldAPI(db_path=db_path, config=config or load_config())

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        _api.open()
        yield
        _api.close()

    _app = FastAPI(
        title       = "OTPShield API",
        description = "OTP phishing and robocall trust scoring — local API",
        version     = VERSION,
        docs_url    = "/docs",
        redoc_url   = None,
        lifespan    = lifespan,
    )

    _app.add_middleware(
        CORSMiddleware,
        allow_origins     = [
            "http://localhost",
            "http://localhost:8765",
            "http://127.0.0.1",
            "http://127.0.0.1:8765",
        ],
        allow_methods     = ["GET", "POST", "OPTIONS"],
        allow_headers     = ["Content-Type"],
        allow_credentials = False,
    )

    # ── MESSAGES ────────────────────────────────────────────────────────

    @_app.post("/messages/analyze", summary="Analyze one SMS")
    def analyze(req: AnalyzeRequest):
        try:
            if req.update_trust:
                return _api.process_message(req.message, device_id=req.device_id, sender_id=req.sender_id)
            return {
                "analysis": _api.analyze_message(req.message, device_id=req.device_id, sender_id=req.sender_id),
                "sender_trust": None,
            }
        except Exception as exc:
            logger.error(f"Analyze endpoint error: {exc}", exc_info=True)
            raise HTTPException(status_code=500, detail=str(exc))

    @_app.get("/messages/history", summary="Recent OTP analyses")
    def message_history():
        data = _api.get_analysis_history()
        return {"count": len(data), "results": data}

    @_app.post("/messages/report", summary="Report a suspicious message")
    def report(req: ReportRequest):
        try:
            return _api.report_message(req.message, phone_number=req.phone_number)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        except Exception as exc:
            logger.error(f"Report endpoint error: {exc}", exc_info=True)
            raise HTTPException(status_code=500, detail=str(exc))

    # ── SENDERS ─────────────────────────────────────────────────────────

    @_app.get("/senders/{sender_id}", summary="Sender trust score")
    def get_sender(sender_id: str):
        try:
            return _api.get_trust_score(sender_id)
        except Exception as exc:
            raise HTTPException(status_code=500, detail=str(exc))

    @_app.post("/senders/{sender_id}/feedback", summary="Rate a sender (no cooldown)")
    def sender_feedback(sender_id: str, req: FeedbackRequest):
        try:
            return _api.record_sender_feedback(sender_id, req.feedback_type, user_id=req.user_id)
        except Exception as exc:
            raise HTTPException(status_code=500, detail=str(exc))

    # ── CALLS ───────────────────────────────────────────────────────────

    @_app.post("/calls", summary="Record a call")
    def record_call(req: CallRequest):
        try:
            call = _api.record_call(
                req.phone_number,
                duration     = req.duration,
                direction    = req.direction,
                was_answered = req.was_answered,
                timestamp    = req.timestamp,
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        except Exception as exc:
            logger.error(f"Call endpoint error: {exc}", exc_info=True)
            raise HTTPException(status_code=500, detail=str(exc))
        return {
            "call": call,
            "trust": _api.get_call_trust_score(call["phone_number"]),
        }

    @_app.get("/calls/history", summary="Call history, newest first")
    def call_history(phone: Optional[str] = Query(None, description="Filter by phone number")):
        data = _api.get_call_history(phone)
        return {"count": len(data), "calls": data}

    @_app.get("/calls/{number}", summary="Call trust score")
    def get_call_trust(number: str):
        try:
            return _api.get_call_trust_score(number)
        except Exception as exc:
            raise HTTPException(status_code=500, detail=str(exc))

    @_app.post("/calls/{number}/feedback", summary="Rate a number (30-day cooldown)")
    def call_feedback(number: str, req: FeedbackRequest):
        try:
            result = _api.record_call_feedback(number, req.feedback_type, user_id=req.user_id)
        except Exception as exc:
            logger.error(f"Feedback endpoint error: {exc}", exc_info=True)
            raise HTTPException(status_code=500, detail=str(exc))
        if result.get("error"):
            return JSONResponse(content=result, status_code=429)
        return result

    @_app.get("/calls/{number}/feedback", summary="Stored feedback for a number")
    def get_call_feedback(number: str):
        data = _api.get_call_feedback(number)
        return {"count": len(data), "feedback": data}

    # ── LOOKUP / META ───────────────────────────────────────────────────

    @_app.get("/lookup/{number}", summary="Search a number")
    def lookup(number: str):
        try:
            return _api.lookup_number(number)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))

    @_app.get("/tiers", summary="Trust tier taxonomy")
    def tiers():
        return {"tiers": _api.tiers()}

    @_app.get("/health", summary="Health check")
    def health():
        return {
            "status":   "ok",
            "db_path":  str(_api.db_path),
            "store_open": _api.kv.is_open,
            "version":  VERSION,
        }

    return _app


# Module-level app instance, used by uvicorn otpshield.api:app
app = _build_app()


# ═══════════════════════════════════════════════════════════════════════════
# CLI ENTRYPOINT: python -m otpshield.api
# ═══════════════════════════════════════════════════════════════════════════

def serve(host: str = "127.0.0.1", port: int = 8765, db_path: Optional[str] = None) -> None:
    import uvicorn

    config = load_config()
    server_app = _build_app(db_path=db_path or config["db_path"], config=config)
    print(f"""
+--------------------------------------------------+
|   OTPShield API Server v{VERSION}                    |
+--------------------------------------------------+
|  Local:    http://{host}:{port}
|  DB:       {db_path or config["db_path"]}
|  Docs:     http://{host}:{port}/docs
+--------------------------------------------------+
""")
    uvicorn.run(server_app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(
        prog        = "otpshield.api",
        description = "OTPShield API Server — local trust scoring service",
    )
    parser.add_argument("--port", type=int, default=8765, help="Port to bind (default: 8765)")
    parser.add_argument("--db",   type=str, default=None, help="Path to otpshield.db")
    parser.add_argument("--host", type=str, default="127.0.0.1",
                        help="Host to bind — DO NOT change to 0.0.0.0 on shared networks")
    args = parser.parse_args()
    serve(host=args.host, port=args.port, db_path=args.db)
