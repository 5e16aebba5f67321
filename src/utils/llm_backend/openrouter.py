from typing import Dict, Any, Optional, List
from copy import deepcopy
import json
import logging
import time
import random

from config import config
from utils.llm_backend.base import LLMBackend, LLMResponse

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class OpenRouterBackend(LLMBackend):
    def __init__(self, model: Optional[str] = None, api_key: Optional[str] = None,
                 base_url: Optional[str] = None, provider: str = "openrouter"):
        super().__init__(model or config.DEFAULT_MODEL)

        api_key = api_key or config.OPENROUTER_API_KEY
        if not api_key:
            raise ValueError("No OpenRouter API key found. Set OPENROUTER_API_KEY")

        self.provider = provider
        base_url = base_url or OPENROUTER_BASE_URL

        try:
            from openai import OpenAI
            import httpx
            timeout = httpx.Timeout(300.0, connect=30.0, read=300.0)
            self._http_client = httpx.Client(timeout=timeout)
            self.client = OpenAI(api_key=api_key, base_url=base_url, http_client=self._http_client)
        except ImportError:
            raise ImportError("openai package required for OpenRouterBackend. Install with: pip install openai")

        logger.debug(f"OpenRouter backend initialized provider={provider}, model={self.model}")

    def close(self):
        if getattr(self, '_http_client', None):
            self._http_client.close()
            self._http_client = None

    def is_available(self) -> bool:
        return getattr(self, "client", None) is not None

    def _is_retryable_error(self, error: Exception) -> bool:
        error_str = str(error).lower()
        retryable_patterns = [
            "connection", "connect", "network", "socket", "reset by peer", "broken pipe", "eof",
            "ssl", "tls", "handshake", "closed", "timeout", "timed out", "deadline exceeded",
            "rate limit", "rate_limit", "too many requests", "quota exceeded", "throttl",
            "429", "500", "502", "503", "504", "520", "521", "522", "523", "524",
            "service unavailable", "bad gateway", "gateway timeout", "internal server error",
            "server error", "temporarily unavailable", "overloaded", "capacity", "upstream",
            "provider", "model unavailable",
        ]
        return any(pattern in error_str for pattern in retryable_patterns)

    def _retry_with_backoff(self, func, max_retries: int = 8, base_delay: float = 3.0):
        last_exception = None
        start_time = time.time()
        MAX_TOTAL_TIME = 300

        for attempt in range(max_retries + 1):
            if time.time() - start_time > MAX_TOTAL_TIME:
                raise RuntimeError(f"Retry timeout exceeded ({MAX_TOTAL_TIME}s elapsed)")
            try:
                return func()
            except Exception as e:
                last_exception = e
                if not self._is_retryable_error(e):
                    raise
                if attempt >= max_retries:
                    logger.error(f"OpenRouter: all {max_retries + 1} attempts failed: {e}")
                    raise
                delay = min(120.0, base_delay * (2 ** attempt)) + random.uniform(0, 2)
                logger.warning(f"OpenRouter attempt {attempt + 1}/{max_retries + 1} failed: {e}; "
                               f"retrying in {delay:.1f}s")
                time.sleep(delay)
        raise last_exception

    def _get_reasoning_params(self) -> Dict[str, Any]:
        model_info = config.MODEL_REGISTRY.get(self.model, {})
        reasoning_support = model_info.get("reasoning_support")
        if not reasoning_support:
            return {}

        defaults = model_info.get("reasoning_default", {})
        if reasoning_support == "openrouter_unified":
            reasoning_config = {"enabled": defaults.get("enabled", True),
                                "effort": config.REASONING_EFFORT or defaults.get("effort", "medium")}
        elif reasoning_support == "effort":
            reasoning_config = {"effort": config.REASONING_EFFORT or defaults.get("effort", "low")}
        else:
            return {}
        if config.REASONING_EXCLUDE:
            reasoning_config["exclude"] = True
        return {"reasoning": reasoning_config}

    def _extract_reasoning_info(self, message: Any) -> Dict[str, Any]:
        result = {"thinking": None, "reasoning_details": None, "thinking_tokens": 0}
        if getattr(message, "reasoning", None):
            result["thinking"] = message.reasoning
        details = getattr(message, "reasoning_details", None)
        if details:
            result["reasoning_details"] = details
            thinking_parts = []
            for detail in details:
                dtype = detail.get("type", "")
                if dtype == "reasoning.text":
                    thinking_parts.append(detail.get("text", ""))
                elif dtype == "reasoning.summary":
                    thinking_parts.append(detail.get("summary", ""))
            if thinking_parts:
                result["thinking"] = "\n\n".join(thinking_parts)
        return result

    def _normalize_tools_for_openai(self, tools: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """accept openai-style or {name, description, input_schema} declarations"""
        normalized = []
        for tool in tools or []:
            if not tool:
                continue
            if tool.get("type") == "function" and "function" in tool:
                fn_def = deepcopy(tool["function"])
                parameters = fn_def.pop("parameters", None) or fn_def.pop("input_schema", None)
                name, description = fn_def.get("name"), fn_def.get("description", "")
            else:
                name, description = tool.get("name"), tool.get("description", "")
                parameters = tool.get("parameters") or tool.get("input_schema")
            if not name:
                logger.debug(f"Skipping tool without name: {tool}")
                continue
            if not isinstance(parameters, dict):
                parameters = {"type": "object", "properties": {}}
            normalized.append({"type": "function", "function": {
                "name": name, "description": description, "parameters": parameters}})
        return normalized

    def _convert_multi_turn_messages(self, msgs):
        oa = []
        for m in msgs:
            role, content = m.get("role"), m.get("content")
            if isinstance(content, str):
                if role in ("system", "user", "assistant"):
                    oa.append({"role": role, "content": content})
            elif isinstance(content, list):
                if role == "assistant":
                    texts, tcalls = [], []
                    for b in content:
                        bt = b.get("type")
                        if bt == "text":
                            texts.append(b.get("text", ""))
                        elif bt == "tool_use":
                            args = b.get("input", {})
                            try:
                                arg_str = args if isinstance(args, str) else json.dumps(args)
                            except TypeError:
                                arg_str = json.dumps({"raw": str(args)})
                            tcalls.append({"id": b.get("id") or f"toolu_{len(tcalls)+1}", "type": "function",
                                           "function": {"name": b.get("name"), "arguments": arg_str}})
                    amsg = {"role": "assistant"}
                    if texts:
                        amsg["content"] = "\n".join(t for t in texts if t).strip()
                    if tcalls:
                        amsg["tool_calls"] = tcalls
                    if amsg.get("content") or tcalls:
                        oa.append(amsg)
                elif role == "user":
                    utexts = []
                    for b in content:
                        if b.get("type") == "tool_result":
                            body = b.get("content", "")
                            oa.append({"role": "tool", "tool_call_id": b.get("tool_use_id") or b.get("id"),
                                       "name": b.get("name"),
                                       "content": body if isinstance(body, str) else json.dumps(body, default=str)})
                        elif b.get("type") == "text":
                            utexts.append(b.get("text", ""))
                    if utexts:
                        oa.append({"role": "user", "content": "\n".join(utexts)})
                else:
                    oa.append({"role": role or "user", "content": json.dumps(content)})
            elif content is not None:
                oa.append({"role": role or "user", "content": str(content)})
        return oa

    def _parse_tool_calls(self, response):
        tool_calls = []
        for choice in response.choices:
            for tc in getattr(choice.message, 'tool_calls', None) or []:
                raw_args = getattr(tc.function, "arguments", None)
                parsed = raw_args
                if isinstance(raw_args, str):
                    try:
                        parsed = json.loads(raw_args) if raw_args.strip() else {}
                    except json.JSONDecodeError as e:
                        logger.warning(f"Failed to parse tool args for {tc.function.name}: {e}")
                        parsed = {"raw": raw_args, "parse_error": str(e)}
                tool_calls.append({"id": tc.id, "name": tc.function.name, "input": parsed})
        return tool_calls

    def _calculate_cost(self, usage, reasoning_tokens_from_msg=0):
        if not usage:
            logger.debug("OpenRouter response missing usage info")
            return 0, 0, 0, 0.0

        prompt_tokens = getattr(usage, 'prompt_tokens', 0) or 0
        completion_tokens = getattr(usage, 'completion_tokens', 0) or 0
        reasoning_tokens = getattr(usage, 'reasoning_tokens', 0) or reasoning_tokens_from_msg

        pricing = config.get_model_pricing(self.model)
        input_cost = (prompt_tokens / 1_000_000) * pricing["input"]
        regular_output_tokens = max(0, completion_tokens - reasoning_tokens)
        output_cost = (regular_output_tokens / 1_000_000) * pricing["output"]
        reasoning_price = pricing.get("reasoning_output", pricing["output"])
        reasoning_cost = (reasoning_tokens / 1_000_000) * reasoning_price
        return prompt_tokens, completion_tokens, reasoning_tokens, input_cost + output_cost + reasoning_cost

    def _complete(self, request_params: Dict[str, Any], extra_body: Dict[str, Any], **kwargs) -> LLMResponse:
        if extra_body:
            request_params["extra_body"] = extra_body
        if config.DEBUG_LLM_CALLS:
            logger.info(f"[debug] request params: {sorted(request_params)}")

        def _make_request():
            response = self.client.chat.completions.create(**request_params, **kwargs)
            if not response.choices:
                raise ValueError("OpenRouter API returned empty choices array")
            return response

        response = self._retry_with_backoff(_make_request)
        text = "".join(c.message.content or "" for c in response.choices)
        tool_calls = self._parse_tool_calls(response)
        reasoning_info = self._extract_reasoning_info(response.choices[0].message)
        prompt_tokens, completion_tokens, reasoning_tokens, cost = self._calculate_cost(
            response.usage, reasoning_info["thinking_tokens"])

        logger.debug(f"OpenRouter response: input_tokens={prompt_tokens}, output_tokens={completion_tokens}, "
                     f"tool_calls={len(tool_calls)}, finish_reason={response.choices[0].finish_reason}")

        return LLMResponse(text=text, thinking=reasoning_info["thinking"],
                           reasoning_details=reasoning_info["reasoning_details"],
                           prompt_tokens=prompt_tokens, output_tokens=completion_tokens,
                           thinking_tokens=reasoning_tokens, cost=cost, model=self.model,
                           tool_calls=tool_calls,
                           metadata={"provider": self.provider, "stop_reason": response.choices[0].finish_reason,
                                     "reasoning_enabled": bool(extra_body.get("reasoning"))})

    def generate_with_tools_multi_turn(self, messages: List[Dict[str, Any]], tools: List[Dict[str, Any]],
                                       max_tokens: Optional[int] = None, temperature: Optional[float] = None,
                                       system_prompt: Optional[str] = None, enable_thinking: bool = True,
                                       **kwargs) -> LLMResponse:
        msgs = list(messages or [])
        if system_prompt and (not msgs or msgs[0].get("role") != "system"):
            msgs.insert(0, {"role": "system", "content": system_prompt})

        openai_tools = self._normalize_tools_for_openai(tools)
        extra_body = self._get_reasoning_params() if enable_thinking else {}
        request_params = {"model": self.model, "messages": self._convert_multi_turn_messages(msgs),
                          "max_tokens": max_tokens or config.MAX_OUTPUT_TOKENS,
                          "temperature": temperature if temperature is not None else config.NORMAL_TEMPERATURE}
        if openai_tools:
            request_params.update({"tools": openai_tools, "tool_choice": "auto"})

        logger.debug(f"OpenRouter multi-turn: model={self.model}, messages={len(request_params['messages'])}, "
                     f"tools={len(openai_tools)}")
        return self._complete(request_params, extra_body, **kwargs)
