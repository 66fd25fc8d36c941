"""
Transformers inference engine

Builder-style construction of loaded sessions and the session wrapper that
serialises generation against one loaded model.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import torch
from PIL import Image
from loguru import logger
from transformers import (
    AutoModelForCausalLM,
    AutoModelForImageTextToText,
    AutoProcessor,
    AutoTokenizer,
    BitsAndBytesConfig,
)

from .errors import Cancelled
from .registry import QuantLevel


def load_chat_template(path: Path) -> str:
    """Read a chat template from a raw Jinja file or a JSON file with a ``chat_template`` key."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix != ".json":
        return text

    data = json.loads(text)
    template = data.get("chat_template")
    if isinstance(template, list):
        # Named templates, as stored in some tokenizer_config.json files
        named = {item.get("name"): item.get("template") for item in template}
        template = named.get("default") or next(iter(named.values()), None)
    if not isinstance(template, str) or not template:
        raise ValueError(f"No chat_template found in {path}")
    return template


def in_place_quantization(level: QuantLevel) -> BitsAndBytesConfig:
    """BitsAndBytes config applied to unquantized weights while loading."""
    if level.bits <= 5:
        return BitsAndBytesConfig(
            load_in_4bit=True,
            bnb_4bit_compute_dtype=torch.float16,
            bnb_4bit_use_double_quant=True,
            bnb_4bit_quant_type="nf4",
        )
    return BitsAndBytesConfig(
        load_in_8bit=True,
        bnb_8bit_compute_dtype=torch.float16,
    )


class InferenceSession:
    """One loaded model, ready to answer chat turns."""

    # Transformers models are not safe to drive from several threads at once
    supports_concurrency = False

    def __init__(
        self,
        model_id: str,
        model: Any,
        tokenizer: Any = None,
        processor: Any = None,
        device: str = "cpu",
        is_vision: bool = False,
        system_prompt: Optional[str] = None,
        generation: Optional[Dict[str, Any]] = None,
    ):
        self.model_id = model_id
        self.model = model
        self.tokenizer = tokenizer
        self.processor = processor
        self.device = device
        self.is_vision = is_vision
        self.system_prompt = system_prompt
        self.generation = dict(generation or {})
        self._lock = asyncio.Lock()
        self._loaded = model is not None

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def generate(self, text: str, image: Optional[Image.Image] = None) -> str:
        """Generate a reply to ``text`` (and ``image`` for vision models)."""
        if self.supports_concurrency:
            return await self._generate(text, image)
        async with self._lock:
            return await self._generate(text, image)

    async def _generate(self, text: str, image: Optional[Image.Image]) -> str:
        if not self._loaded:
            raise Cancelled(self.model_id)
        return await asyncio.to_thread(self._generate_sync, text, image)

    def _generate_sync(self, text: str, image: Optional[Image.Image]) -> str:
        logger.info(f"Generating with {self.model_id} (image={'yes' if image is not None else 'no'})")
        if self.is_vision:
            inputs = self._vision_inputs(text, image)
            pad_token_id = getattr(self.processor.tokenizer, "pad_token_id", None)
        else:
            inputs = self._text_inputs(text)
            pad_token_id = self.tokenizer.pad_token_id

        inputs = inputs.to(self.model.device)
        temperature = self.generation.get("temperature", 0.7)
        params = {
            "max_new_tokens": self.generation.get("max_new_tokens", 512),
            "pad_token_id": pad_token_id,
        }
        if temperature > 0:
            params.update(do_sample=True, temperature=temperature, top_p=self.generation.get("top_p", 0.9))
        else:
            params["do_sample"] = False

        with torch.no_grad():
            output = self.model.generate(**inputs, **params)

        prompt_length = inputs["input_ids"].shape[-1]
        decoder = self.processor if self.is_vision else self.tokenizer
        reply = decoder.decode(output[0][prompt_length:], skip_special_tokens=True)
        logger.info(f"Generation complete for {self.model_id}: {len(reply)} characters")
        return reply

    def _text_inputs(self, text: str):
        content = f"{self.system_prompt}\n\n{text}" if self.system_prompt else text
        if self.tokenizer.chat_template:
            messages = [{"role": "user", "content": content}]
            return self.tokenizer.apply_chat_template(
                messages,
                add_generation_prompt=True,
                return_dict=True,
                return_tensors="pt",
            )
        return self.tokenizer(
            f"User: {content.strip()}\n\nAssistant: ",
            return_tensors="pt",
        )

    def _vision_inputs(self, text: str, image: Optional[Image.Image]):
        content: List[Dict[str, Any]] = []
        if image is not None:
            content.append({"type": "image"})
        content.append({"type": "text", "text": text})
        prompt = self.processor.apply_chat_template(
            [{"role": "user", "content": content}],
            add_generation_prompt=True,
        )
        if image is not None:
            return self.processor(
                images=image, text=prompt, add_special_tokens=False, return_tensors="pt"
            )
        return self.processor(text=prompt, add_special_tokens=False, return_tensors="pt")

    async def unload(self):
        """Release the model once any in-flight generation has finished."""
        async with self._lock:
            self.release()

    def release(self):
        """Drop references to the model so its memory can be reclaimed."""
        if not self._loaded:
            return
        self.model = None
        self.tokenizer = None
        self.processor = None
        self._loaded = False

        if torch.cuda.is_available():
            torch.cuda.empty_cache()

        logger.info(f"Unloaded model: {self.model_id}")

    def get_model_info(self) -> Dict[str, Any]:
        return {
            "model_id": self.model_id,
            "loaded": self._loaded,
            "device": self.device,
            "is_vision": self.is_vision,
        }


class TransformersModelBuilder:
    """Fluent configuration for loading a model with transformers."""

    def __init__(self, source: str, model_id: Optional[str] = None):
        self.source = source
        self.model_id = model_id or source
        self.gguf_file: Optional[str] = None
        self.variant: Optional[str] = None
        self.quantization: Optional[QuantLevel] = None
        self.chat_template: Optional[Path] = None
        self.token: Optional[str] = None
        self.device = "cpu"
        self.vision = False
        self.system_prompt: Optional[str] = None
        self.generation: Dict[str, Any] = {}

    def with_gguf_file(self, filename: str) -> "TransformersModelBuilder":
        self.gguf_file = filename
        return self

    def with_variant(self, variant: str) -> "TransformersModelBuilder":
        self.variant = variant
        return self

    def with_in_place_quantization(self, level: QuantLevel) -> "TransformersModelBuilder":
        self.quantization = level
        return self

    def with_chat_template(self, path: Path) -> "TransformersModelBuilder":
        self.chat_template = Path(path)
        return self

    def with_token(self, token: Optional[str]) -> "TransformersModelBuilder":
        self.token = token
        return self

    def with_device(self, device: str) -> "TransformersModelBuilder":
        self.device = device
        return self

    def with_vision(self, vision: bool = True) -> "TransformersModelBuilder":
        self.vision = vision
        return self

    def with_system_prompt(self, prompt: Optional[str]) -> "TransformersModelBuilder":
        self.system_prompt = prompt
        return self

    def with_generation(self, **params) -> "TransformersModelBuilder":
        self.generation.update(params)
        return self

    def build(self) -> InferenceSession:
        """Load tokenizer/processor and weights. Blocking; run in a worker thread."""
        if self.vision and self.gguf_file:
            raise ValueError("GGUF weights cannot be loaded as a vision model")

        logger.info(f"Loading model {self.model_id} from {self.source}")
        template = load_chat_template(self.chat_template) if self.chat_template else None
        common: Dict[str, Any] = {"token": self.token}
        if self.gguf_file:
            common["gguf_file"] = self.gguf_file

        model_kwargs: Dict[str, Any] = dict(
            common,
            torch_dtype=torch.float16 if self.device in ("cuda", "mps") else torch.float32,
        )
        if self.variant:
            model_kwargs["variant"] = self.variant
            model_kwargs["use_safetensors"] = True

        if self.quantization is not None and self.device == "cuda":
            model_kwargs["quantization_config"] = in_place_quantization(self.quantization)
            model_kwargs["device_map"] = "auto"
            logger.info(f"Quantizing {self.model_id} in place to {self.quantization.value}")
        elif self.quantization is not None:
            logger.warning(
                f"In-place quantization needs CUDA; loading {self.model_id} unquantized on {self.device}"
            )
        elif self.device == "cuda":
            model_kwargs["device_map"] = "auto"

        tokenizer = None
        processor = None
        if self.vision:
            processor = AutoProcessor.from_pretrained(self.source, **common)
            if template:
                processor.chat_template = template
            model = AutoModelForImageTextToText.from_pretrained(self.source, **model_kwargs)
        else:
            tokenizer = AutoTokenizer.from_pretrained(self.source, **common)
            if template:
                tokenizer.chat_template = template
            if tokenizer.pad_token is None:
                tokenizer.pad_token = tokenizer.eos_token
            model = AutoModelForCausalLM.from_pretrained(self.source, **model_kwargs)

        if self.device == "mps":
            model = model.to("mps")
        model.eval()

        logger.info(f"Successfully loaded model: {self.model_id}")
        return InferenceSession(
            model_id=self.model_id,
            model=model,
            tokenizer=tokenizer,
            processor=processor,
            device=self.device,
            is_vision=self.vision,
            system_prompt=None if self.vision else self.system_prompt,
            generation=self.generation,
        )
