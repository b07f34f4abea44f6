from __future__ import annotations
import json
import re
import httpx
from typing import Any, Dict, List, Optional
from .errors import AIServiceUnavailable
from .settings import settings


def extract_json_block(text: str) -> Dict[str, Any]:
	"""Parse a JSON object from model output, tolerating surrounding prose."""
	try:
		data = json.loads(text)
		if isinstance(data, dict):
			return data
	except ValueError:
		pass
	# Try to locate the first JSON object in the text
	match = re.search(r"\{[\s\S]*\}", text or "")
	if match:
		try:
			data = json.loads(match.group(0))
			if isinstance(data, dict):
				return data
		except ValueError:
			pass
	raise AIServiceUnavailable("judgement", "response did not contain a JSON object")


class SpeechAIClient:
	"""Transcription, text generation and speech synthesis over an OpenAI-compatible API."""

	def __init__(
		self,
		api_key: Optional[str] = None,
		*,
		base_url: Optional[str] = None,
		chat_model: Optional[str] = None,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		self.api_key = api_key or settings.ai_api_key
		if not self.api_key:
			raise ValueError("AI_API_KEY is not configured")
		self.base_url = (base_url or settings.ai_base_url).rstrip("/")
		self.chat_model = chat_model or settings.ai_chat_model
		self._client = httpx.AsyncClient(
			base_url=self.base_url,
			headers={"Authorization": f"Bearer {self.api_key}"},
			timeout=settings.ai_timeout_seconds,
			transport=transport,
		)

	async def transcribe(self, audio: bytes, *, filename: str = "recording.webm", content_type: str = "audio/webm") -> str:
		r = await self._send(
			"transcription",
			"/audio/transcriptions",
			data={"model": settings.ai_transcribe_model, "language": "en"},
			files={"file": (filename, audio, content_type)},
		)
		try:
			return str(r.json()["text"])
		except (KeyError, ValueError) as err:
			raise AIServiceUnavailable("transcription", f"unexpected response: {r.text[:200]}") from err

	async def complete(
		self,
		messages: List[Dict[str, str]],
		*,
		temperature: float = 0.7,
		max_tokens: Optional[int] = None,
		json_mode: bool = False,
	) -> str:
		payload: Dict[str, Any] = {"model": self.chat_model, "messages": messages, "temperature": temperature}
		if max_tokens is not None:
			payload["max_tokens"] = max_tokens
		if json_mode:
			payload["response_format"] = {"type": "json_object"}
		r = await self._send("completion", "/chat/completions", json=payload)
		try:
			return r.json()["choices"][0]["message"]["content"] or ""
		except (KeyError, IndexError, ValueError) as err:
			raise AIServiceUnavailable("completion", f"unexpected response: {r.text[:200]}") from err

	async def judge(self, system: str, prompt: str) -> Dict[str, Any]:
		text = await self.complete(
			[{"role": "system", "content": system}, {"role": "user", "content": prompt}],
			json_mode=True,
		)
		return extract_json_block(text)

	async def synthesize(self, text: str) -> bytes:
		r = await self._send(
			"speech",
			"/audio/speech",
			json={"model": settings.ai_tts_model, "voice": settings.ai_tts_voice, "input": text},
		)
		return r.content

	async def _send(self, operation: str, path: str, **kwargs: Any) -> httpx.Response:
		try:
			r = await self._client.post(path, **kwargs)
			r.raise_for_status()
		except httpx.HTTPStatusError as http_err:
			raise AIServiceUnavailable(operation, f"HTTP {http_err.response.status_code}") from http_err
		except httpx.RequestError as net_err:
			raise AIServiceUnavailable(operation, str(net_err)) from net_err
		return r

	async def aclose(self) -> None:
		await self._client.aclose()
