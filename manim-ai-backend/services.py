"""
Service classes for the language-generation and speech-synthesis APIs.
Both talk to an OpenAI-compatible HTTP endpoint.
"""

import logging
from typing import List, Optional, Tuple

import requests

from config import (
    OPENAI_BASE_URL,
    LLM_MODEL,
    LLM_TEMPERATURE,
    LLM_TIMEOUT_SECONDS,
    TTS_MODEL,
    TTS_VOICE,
    TTS_TIMEOUT_SECONDS,
    SCRIPT_SYSTEM_PROMPT,
    SCENE_SYSTEM_PROMPT,
    SCENE_USER_TEMPLATE,
    SCENE_EXAMPLES,
)
from errors import GenerationError


class LLMService:
    """Handles AI model communication for script and scene code generation."""

    def __init__(self, api_key: str, base_url: str = OPENAI_BASE_URL, model: str = LLM_MODEL):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model

    def chat(self, messages: List[dict]) -> str:
        payload = {
            "model": self.model,
            "temperature": LLM_TEMPERATURE,
            "messages": messages,
        }
        try:
            response = requests.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=LLM_TIMEOUT_SECONDS,
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise GenerationError(f"Could not reach the language model: {e}")
        except ValueError:
            raise GenerationError("Language model returned a non-JSON response.")

        choices = data.get("choices") or [{}]
        return (choices[0].get("message", {}).get("content") or "").strip()

    def generate_script(self, prompt: str) -> str:
        """Ask for an alternating <nar>/<viz> script for the user's prompt."""
        logging.info(f"📝 Requesting narration script from {self.model}: '{prompt}'")
        return self.chat([
            {"role": "system", "content": SCRIPT_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ])

    def generate_scene_code(self, visualization: str, examples: Optional[List[Tuple[str, str]]] = None) -> str:
        messages = [{"role": "system", "content": SCENE_SYSTEM_PROMPT}]
        for user, assistant in (SCENE_EXAMPLES if examples is None else examples):
            messages.append({"role": "user", "content": user})
            messages.append({"role": "assistant", "content": assistant})
        messages.append({"role": "user", "content": SCENE_USER_TEMPLATE.format(visualization=visualization)})
        return self.chat(messages)


class SpeechService:
    """Text-to-speech synthesis, one MP3 per narration segment."""

    def __init__(self, api_key: str, base_url: str = OPENAI_BASE_URL, model: str = TTS_MODEL, voice: str = TTS_VOICE):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.voice = voice

    def synthesize(self, text: str) -> bytes:
        payload = {
            "model": self.model,
            "voice": self.voice,
            "input": text,
            "response_format": "mp3",
        }
        try:
            response = requests.post(
                f"{self.base_url}/audio/speech",
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=TTS_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            raise GenerationError(f"Could not reach the speech service: {e}")

        if not response.ok:
            raise GenerationError(f"TTS failed: {response.status_code} {response.text[:800]}")
        if not response.content:
            raise GenerationError("TTS returned an empty audio payload.")
        return response.content
