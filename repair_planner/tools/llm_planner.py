# repair_planner/tools/llm_planner.py
from __future__ import annotations
import os
import threading
from typing import Any, Dict, Protocol

from anthropic import AsyncAnthropic
from dotenv import load_dotenv

from repair_planner.definitions import CONFIG_DIR
from repair_planner.prompts import AGENT_INSTRUCTIONS, AGENT_NAME
from repair_planner.utils.logger import get_logger
from repair_planner.utils.utilities import load_yaml, section

_LOCK = threading.RLock()
_CLIENT: AsyncAnthropic | None = None
_LLM_CFG: Dict[str, Any] | None = None

_DEFAULT_MODEL = "claude-sonnet-4-5"


class PlannerAgent(Protocol):
    """Text in, text out. The planning pipeline only ever calls `invoke`."""

    name: str

    async def invoke(self, prompt: str) -> str:
        ...


def _load_llm_yaml() -> Dict[str, Any]:
    global _LLM_CFG
    if _LLM_CFG is not None:
        return _LLM_CFG
    with _LOCK:
        if _LLM_CFG is None:
            _LLM_CFG = load_yaml(os.path.join(CONFIG_DIR, "llm_config.yaml"))
        return _LLM_CFG


def _llm_profile(cfg: Dict[str, Any], profile_name: str | None = None) -> Dict[str, Any]:
    meta = section(cfg, "meta")
    profiles = section(cfg, "llm", "profiles")
    name = profile_name or meta.get("default_profile") or "llm_claude"
    return profiles.get(name) or {}


def _get_client() -> AsyncAnthropic:
    global _CLIENT
    if _CLIENT is not None:
        return _CLIENT
    with _LOCK:
        if _CLIENT is not None:
            return _CLIENT
        load_dotenv()

        prof = _llm_profile(_load_llm_yaml())
        env_cfg = section(prof, "env")
        api_cfg = section(prof, "api")

        api_key_env = env_cfg.get("api_key_env", "ANTHROPIC_API_KEY")
        api_key = os.getenv(api_key_env)
        if not api_key:
            raise RuntimeError(f"{api_key_env} not set in environment or .env")

        client_kwargs: Dict[str, Any] = {"api_key": api_key}
        if api_cfg.get("base_url"):
            client_kwargs["base_url"] = api_cfg["base_url"]
        if api_cfg.get("version"):
            client_kwargs["default_headers"] = {"anthropic-version": str(api_cfg["version"])}

        _CLIENT = AsyncAnthropic(**client_kwargs)
        return _CLIENT


class ClaudePlannerAgent:
    """
    Repair planning agent backed by the Anthropic messages API.
    The fixed instruction block goes out as the system prompt; the per-fault
    prompt is the single user message.
    """

    def __init__(self, model: str | None = None, *, client: AsyncAnthropic | None = None,
                 instructions: str = AGENT_INSTRUCTIONS, profile: str | None = None):
        self.name = AGENT_NAME
        self.log = get_logger(self.__class__.__name__)
        self.client = client or _get_client()
        self.instructions = instructions

        prof = _llm_profile(_load_llm_yaml(), profile)
        self.model = model or prof.get("model_name") or _DEFAULT_MODEL

        gen = section(prof, "generation")
        self.gen_defaults = {
            "max_new_tokens": int(gen.get("max_new_tokens", 2048)),
            "temperature": float(gen.get("temperature", 0.2)),
            "top_p": gen.get("top_p"),
        }
        self.log.info("Agent '%s' using model '%s'", self.name, self.model)

    async def invoke(self, prompt: str) -> str:
        kwargs: Dict[str, Any] = {"temperature": self.gen_defaults["temperature"]}
        # recent models reject temperature and top_p together
        if self.gen_defaults["top_p"] is not None:
            kwargs["top_p"] = float(self.gen_defaults["top_p"])
        msg = await self.client.messages.create(
            model=self.model,
            max_tokens=self.gen_defaults["max_new_tokens"],
            system=self.instructions,
            messages=[{"role": "user", "content": prompt}],
            **kwargs,
        )
        # msg.content is a list of blocks; join text
        parts = []
        for b in getattr(msg, "content", []) or []:
            t = getattr(b, "text", None)
            if t:
                parts.append(t)
            elif isinstance(b, dict) and b.get("type") == "text":
                parts.append(b.get("text") or "")
        return "".join(parts).strip()
