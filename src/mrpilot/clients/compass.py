"""Client for the Compass workflow service that runs AI code reviews."""

from typing import Any, Dict

import requests
from loguru import logger

from mrpilot.clients.http import DEFAULT_TIMEOUT, json_or_empty, raise_for_status
from mrpilot.config import Settings


class CompassClient:
    def __init__(self, settings: Settings):
        self.base_url = settings.require("compass_base_url").rstrip("/")
        self.headers = {
            "X-Api-Key": settings.require("compass_api_token"),
            "Content-Type": "application/json",
        }

    def submit_review(self, merge_request_url: str, email: str, model: str, provider: str = "openai") -> Dict[str, Any]:
        """Queue a code-review job for one merge request."""
        payload = {
            "taskId": "code-review",
            "version": "v1",
            "input": {
                "mergeRequestUrl": merge_request_url,
                "email": email,
                "llm": {"provider": provider, "model": model},
            },
        }
        logger.info(f"Submitting AI review for {merge_request_url}")
        response = requests.post(
            f"{self.base_url}/api/workflows/jobs", headers=self.headers, json=payload, timeout=DEFAULT_TIMEOUT
        )
        raise_for_status("Compass", response)
        return json_or_empty(response)
