"""
Witness and call REST API.

    GET /api/witness                      - all witness records
    GET /api/witness/{id}                 - one witness record
    GET /api/witness/call/{call_id}       - witness record for a call
    GET /api/witness/decision/{call_id}   - decision disclosure (web proof target)
    GET /api/calls                        - live call sessions
    GET /api/calls/{call_id}              - one live call session
"""

import logging

from aiohttp import web

from ..core.session_store import SessionStore
from ..witness.disclosure import DisclosureStore
from ..witness.store import WitnessStore

logger = logging.getLogger("vericall.api")


class VeriCallAPI:
    """Read-only status endpoints over the witness, disclosure and session stores."""

    def __init__(
        self,
        witnesses: WitnessStore,
        disclosures: DisclosureStore,
        sessions: SessionStore,
    ):
        self.witnesses = witnesses
        self.disclosures = disclosures
        self.sessions = sessions

    async def list_witnesses(self, request: web.Request) -> web.Response:
        records = [r.to_dict() for r in self.witnesses.list_all()]
        return web.json_response({"records": records, "count": len(records)})

    async def get_witness(self, request: web.Request) -> web.Response:
        witness_id = request.match_info["witness_id"]
        record = self.witnesses.get(witness_id)
        if record is None:
            return web.json_response({"error": "Witness not found"}, status=404)
        return web.json_response(record.to_dict())

    async def get_witness_by_call(self, request: web.Request) -> web.Response:
        call_id = request.match_info["call_id"]
        record = self.witnesses.get_by_call_id(call_id)
        if record is None:
            return web.json_response({"error": "No witness for call"}, status=404)
        return web.json_response(record.to_dict())

    async def get_decision(self, request: web.Request) -> web.Response:
        """
        Decision disclosure for a call.

        This exact JSON is what the web prover attests; only the fields
        extracted into the ZK journal are proven on-chain.
        """
        call_id = request.match_info["call_id"]
        record = self.disclosures.get(call_id)
        if record is None:
            return web.json_response({"error": "Decision not found or expired"}, status=404)
        return web.json_response(record.to_payload())

    async def list_calls(self, request: web.Request) -> web.Response:
        calls = self.sessions.list()
        return web.json_response({"calls": calls, "count": len(calls)})

    async def get_call(self, request: web.Request) -> web.Response:
        call_id = request.match_info["call_id"]
        info = self.sessions.info(call_id)
        if info is None:
            return web.json_response({"error": "Call not found"}, status=404)
        return web.json_response(info)

    def add_routes(self, app: web.Application) -> None:
        # Literal paths before the {witness_id} catch-all
        app.router.add_get("/api/witness", self.list_witnesses)
        app.router.add_get("/api/witness/call/{call_id}", self.get_witness_by_call)
        app.router.add_get("/api/witness/decision/{call_id}", self.get_decision)
        app.router.add_get("/api/witness/{witness_id}", self.get_witness)
        app.router.add_get("/api/calls", self.list_calls)
        app.router.add_get("/api/calls/{call_id}", self.get_call)
