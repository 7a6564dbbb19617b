"""
Reasoning service module.

Handles the JSON-mode chat completions used by the escalation pipeline:
a text-only verdict request (stage 1) and a multimodal refinement request
with webcam/screen snapshots attached (stage 2).
"""

import json
from typing import Any, Dict, List, Optional

from openai import AzureOpenAI

import config


class ReasoningError(Exception):
    """The reasoning service returned something other than a JSON object."""


class ReasoningService:
    """
    Service class for structured (JSON) completions against Azure OpenAI.

    The client is built with the credential active at construction time;
    get_reasoning_service() rebuilds it when the credential changes.
    """

    def __init__(self):
        """Initialize the Azure OpenAI client."""
        self.credential_version = config.credential_version()
        self.client = AzureOpenAI(
            azure_endpoint=config.AZURE_OPENAI_ENDPOINT,
            api_key=config.get_api_key(),
            api_version=config.AZURE_OPENAI_API_VERSION,
            timeout=config.REASONING_TIMEOUT_SEC,
        )
        self.deployment_name = config.DEPLOYMENT_NAME

    def generate_json(
        self,
        prompt: str,
        extra_texts: Optional[List[str]] = None,
        images_b64: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """
        Request a JSON object.

        Args:
            prompt: Main instruction text
            extra_texts: Additional text parts sent after the prompt
            images_b64: Base64 JPEG images attached as data URLs

        Returns:
            dict: The parsed JSON object

        Raises:
            ReasoningError: If the response is empty or not a JSON object
            openai.OpenAIError: If the API call fails
        """
        if extra_texts or images_b64:
            content: Any = [{"type": "text", "text": prompt}]
            for text in extra_texts or []:
                content.append({"type": "text", "text": text})
            for image in images_b64 or []:
                content.append({
                    "type": "image_url",
                    "image_url": {"url": f"data:image/jpeg;base64,{image}"},
                })
        else:
            content = prompt

        response = self.client.chat.completions.create(
            model=self.deployment_name,
            messages=[{"role": "user", "content": content}],
            response_format={"type": "json_object"},
            max_tokens=config.REASONING_MAX_TOKENS,
        )
        text = response.choices[0].message.content or ""
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as e:
            raise ReasoningError(f"Malformed JSON from reasoning service: {e}") from e
        if not isinstance(parsed, dict):
            raise ReasoningError("Reasoning service returned JSON that is not an object")
        return parsed


# Lazy singleton: initialized on first use to avoid loading the Azure SDK client at import time
_reasoning_service: Optional[ReasoningService] = None


def get_reasoning_service() -> ReasoningService:
    """Return the reasoning service, (re)creating it on first call or after a credential change."""
    global _reasoning_service
    if _reasoning_service is None or _reasoning_service.credential_version != config.credential_version():
        _reasoning_service = ReasoningService()
    return _reasoning_service
