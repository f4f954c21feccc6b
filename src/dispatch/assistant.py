from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Type, TypeVar

from openai import OpenAI, OpenAIError
from pydantic import BaseModel, ValidationError

from .errors import AssistantError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class RouteOrderReply(BaseModel):
    order: List[int]


class VehicleChoiceReply(BaseModel):
    vehicle_id: int
    reason: Optional[str] = None


class DispatchAssistant:
    """Asks a chat model for strictly-typed JSON and validates it before anyone uses it."""

    SYSTEM_PROMPT = (
        "You are a taxi dispatch optimizer. Answer only with a JSON object "
        "matching the requested schema. No prose."
    )

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", timeout: float = 30.0,
                 client: Optional[Any] = None):
        self.model = model
        self.client = client or OpenAI(api_key=api_key, timeout=timeout)

    def request_json(self, prompt: str, reply_model: Type[M]) -> M:
        schema = json.dumps(reply_model.model_json_schema(), ensure_ascii=False)
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": self.SYSTEM_PROMPT},
                    {"role": "user", "content": f"{prompt}\n\nJSON schema of the answer:\n{schema}"},
                ],
                response_format={"type": "json_object"},
                temperature=0,
            )
            content = response.choices[0].message.content or ""
        except OpenAIError as e:
            raise AssistantError(f"assistant request failed: {e}") from e
        except (IndexError, AttributeError) as e:
            raise AssistantError(f"assistant returned no message: {e}") from e
        try:
            return reply_model.model_validate_json(content)
        except ValidationError as e:
            raise AssistantError(f"assistant reply does not match {reply_model.__name__}: {e}") from e

    # ------------------- Prompts -------------------

    def order_stops(self, matrix_minutes: List[List[float]], stops: List[str]) -> List[int]:
        n = len(stops)
        prompt = (
            "Find the fastest order to visit every destination exactly once.\n"
            f"Stops (index: address): {json.dumps(dict(enumerate(stops)), ensure_ascii=False)}\n"
            f"Travel time matrix in minutes, row = from, column = to: {json.dumps(matrix_minutes)}\n"
            f"Start at index 0 (the pickup). Return 'order' as the destination indices 1..{n - 1}, "
            "each exactly once, in visiting order, without the pickup."
        )
        return self.request_json(prompt, RouteOrderReply).order

    def choose_vehicle(self, candidates: List[Dict[str, Any]], passengers: int) -> int:
        prompt = (
            f"A customer with {passengers} passenger(s) is waiting. Pick the vehicle that minimizes "
            "the time until pickup (eta, minutes, already includes any waiting for busy vehicles). "
            "Prefer the cheaper vehicle only when etas are practically equal.\n"
            f"Candidates: {json.dumps(candidates, ensure_ascii=False)}\n"
            "Return 'vehicle_id' of the chosen candidate."
        )
        reply = self.request_json(prompt, VehicleChoiceReply)
        if reply.reason:
            logger.info("Assistant picked vehicle %s: %s", reply.vehicle_id, reply.reason)
        return reply.vehicle_id
