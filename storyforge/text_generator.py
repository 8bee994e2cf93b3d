"""Local Hugging Face model backend for the generation service.

:class:`TextGenerator` wraps a Transformers causal language model behind the
same ``generate(system_instruction, messages, options)`` call as the OpenAI
backend. Conversations are rendered with the tokenizer's chat template when
the model ships one, and with a plain role-prefixed transcript otherwise.

* 4-bit loading is used only when ``bitsandbytes`` and a GPU are available.
* Sampling parameters come from :class:`GenerationOptions` per call, falling
  back to the defaults given at construction.
* The pad token is aligned with EOS to avoid ``generate`` warnings.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Sequence

import torch
from transformers import AutoModelForCausalLM, AutoTokenizer

from .services.generation import (
    MODEL_ROLE,
    ChatMessage,
    GenerationOptions,
    GenerationServiceError,
)

try:  # ``BitsAndBytesConfig`` requires an optional dependency (bitsandbytes).
    from transformers import BitsAndBytesConfig  # type: ignore
except ImportError:  # pragma: no cover - transformers should always provide this
    BitsAndBytesConfig = None  # type: ignore


LOGGER = logging.getLogger(__name__)


class TextGenerator:
    def __init__(
        self,
        model_path: str,
        *,
        temperature: Optional[float] = 0.8,
        top_p: Optional[float] = 0.95,
        max_new_tokens: int = 2048,
        seed: int = 42,
        device_map: str | Dict[str, Any] | None = "auto",
        use_4bit: bool = True,
        trust_remote_code: bool = False,
    ):
        self.temperature = temperature
        self.top_p = top_p
        self.max_new_tokens = max_new_tokens
        self.seed = seed
        self.device_map = device_map
        self.use_4bit = use_4bit
        self.trust_remote_code = trust_remote_code

        torch.manual_seed(seed)
        if torch.cuda.is_available():
            torch.cuda.manual_seed_all(seed)

        quantization_config = self._build_quantization_config()
        model_kwargs: Dict[str, Any] = {
            "device_map": self.device_map,
            "torch_dtype": "auto",
            "trust_remote_code": trust_remote_code,
        }
        if quantization_config is not None:
            model_kwargs["quantization_config"] = quantization_config

        self.model = AutoModelForCausalLM.from_pretrained(model_path, **model_kwargs)
        self.model.eval()
        self._compute_device_label = self._detect_compute_device()

        self.tokenizer = AutoTokenizer.from_pretrained(
            model_path,
            trust_remote_code=trust_remote_code,
        )
        if self.tokenizer.pad_token is None:
            self.tokenizer.pad_token = self.tokenizer.eos_token
        if self.tokenizer.padding_side != "left":
            self.tokenizer.padding_side = "left"

    def _build_quantization_config(self) -> Optional[BitsAndBytesConfig]:
        """Return a 4-bit quantisation config when supported.

        Without ``bitsandbytes`` (or on CPU) the model loads in standard
        precision. The decision is logged at INFO level.
        """

        if not self.use_4bit:
            return None

        if BitsAndBytesConfig is None:
            LOGGER.info("transformers BitsAndBytesConfig unavailable; using full precision model loading.")
            return None

        if not torch.cuda.is_available():
            LOGGER.info("CUDA is not available; skipping 4-bit quantisation.")
            return None

        try:
            import bitsandbytes  # type: ignore  # noqa: F401
        except ImportError:
            LOGGER.info("bitsandbytes not installed; using full precision model loading.")
            return None

        LOGGER.info("Loading model with 4-bit quantisation enabled.")
        return BitsAndBytesConfig(
            load_in_4bit=True,
            bnb_4bit_use_double_quant=True,
            bnb_4bit_quant_type="nf4",
            bnb_4bit_compute_dtype=torch.float16,
        )

    def generate(
        self,
        system_instruction: str,
        messages: Sequence[ChatMessage],
        options: GenerationOptions,
    ) -> str:
        """Generate the model's next turn without echoing the prompt back."""

        if options.tools:
            LOGGER.info("Local model ignores requested tools: %s", ", ".join(options.tools))
        prompt = self.render_prompt(system_instruction, messages)
        try:
            enc, out = self._generate(
                prompt,
                max_new_tokens=options.max_output_tokens,
                temperature=options.temperature,
                top_p=options.top_p,
                top_k=options.top_k,
            )
        except (RuntimeError, ValueError) as exc:
            raise GenerationServiceError(f"Local model failed to generate text: {exc}") from exc

        prompt_len = enc["input_ids"].shape[-1]
        generated_ids = out[0, prompt_len:]
        if generated_ids.numel() == 0:
            return ""
        return self.tokenizer.decode(generated_ids, skip_special_tokens=True).strip()

    def render_prompt(self, system_instruction: str, messages: Sequence[ChatMessage]) -> str:
        chat: List[Dict[str, str]] = []
        if system_instruction:
            chat.append({"role": "system", "content": system_instruction})
        chat.extend(
            {"role": "assistant" if message.role == MODEL_ROLE else "user", "content": message.text}
            for message in messages
        )

        if getattr(self.tokenizer, "chat_template", None):
            return self.tokenizer.apply_chat_template(chat, tokenize=False, add_generation_prompt=True)

        lines = [f"{entry['role'].capitalize()}: {entry['content']}" for entry in chat]
        lines.append("Assistant:")
        return "\n\n".join(lines)

    def _generate(
        self,
        prompt: str,
        *,
        max_new_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        **extra_parameters: Any,
    ):
        """Generate token ids for ``prompt``.

        Parameters
        ----------
        prompt:
            The rendered conversation used as input for the model.
        max_new_tokens:
            Optional override for the number of new tokens to generate. When
            not provided the default configured at instantiation time is used.
        """
        tokens_to_generate = self.max_new_tokens if max_new_tokens is None else max_new_tokens
        try:
            tokens_to_generate = int(tokens_to_generate)
        except (TypeError, ValueError) as exc:  # pragma: no cover - defensive
            raise ValueError("max_new_tokens must be a positive integer") from exc
        if tokens_to_generate <= 0:
            raise ValueError("max_new_tokens must be a positive integer")

        generation_kwargs = self._prepare_generation_kwargs(
            tokens_to_generate,
            temperature=temperature,
            top_p=top_p,
            **extra_parameters,
        )

        enc = self.tokenizer(prompt, return_tensors="pt").to(self.model.device)
        t0 = time.perf_counter()
        with torch.no_grad():
            out = self.model.generate(**enc, **generation_kwargs)
        LOGGER.debug("Local generation took %.2fs", time.perf_counter() - t0)
        self._compute_device_label = self._detect_compute_device()
        return enc, out

    def _prepare_generation_kwargs(
        self,
        max_new_tokens: int,
        *,
        temperature: Optional[float],
        top_p: Optional[float],
        **extra_parameters: Any,
    ) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "max_new_tokens": max_new_tokens,
            "temperature": self.temperature if temperature is None else temperature,
            "top_p": self.top_p if top_p is None else top_p,
            "do_sample": True,
            "pad_token_id": self.tokenizer.pad_token_id,
        }

        # Unset sampling parameters fall back to the Hugging Face defaults.
        if kwargs["temperature"] is None:
            kwargs.pop("temperature")
        if kwargs["top_p"] is None:
            kwargs.pop("top_p", None)

        for key, value in extra_parameters.items():
            if value is not None:
                kwargs[key] = value

        return kwargs

    def _detect_compute_device(self) -> str:
        try:
            parameter = next(self.model.parameters())
        except StopIteration:  # pragma: no cover - defensive fallback
            device = getattr(self.model, "device", torch.device("cpu"))
        else:
            device = parameter.device

        device_str = str(device).lower()
        if any(token in device_str for token in ("cuda", "hip", "mps")):
            return "GPU"
        return "CPU"

    def get_compute_device(self) -> str:
        return self._compute_device_label
