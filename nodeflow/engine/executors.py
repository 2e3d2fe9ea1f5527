"""
Node executors.

Every node kind has one executor implementing the same capability:

    await executor.execute(node, inputs, cancel_token) -> str

``inputs`` are the results of the node's direct predecessors. Failures are
raised as ExecutionError subtypes. Executors may be interrupted by task
cancellation at any await point and must release what they hold.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional, Sequence
import asyncio
import logging
import os
import re
import signal

import openai

from nodeflow.config import Settings, settings as default_settings
from nodeflow.engine.cancellation import CancelToken
from nodeflow.engine.errors import CommandFailed, GenerationFailed
from nodeflow.engine.node import Node, NodeKind


logger = logging.getLogger(__name__)


_PLACEHOLDER = re.compile(r"\$\{(\d+)\}")


def substitute_inputs(template: str, inputs: Sequence[str]) -> str:
    """
    Replace ``${1}``, ``${2}``, ... with the corresponding input.

    Placeholders without a matching input are left as written.
    """
    def replace(match: "re.Match[str]") -> str:
        index = int(match.group(1))
        if 1 <= index <= len(inputs):
            return inputs[index - 1]
        return match.group(0)

    return _PLACEHOLDER.sub(replace, template)


# ============================================================
# Validation
# ============================================================

REQUIRED_FIELD_MESSAGES = {
    NodeKind.COMMAND: "Command field is required",
    NodeKind.GENERATE: "Prompt field is required",
}


def validate_nodes(nodes: Iterable[Node]) -> Dict[str, str]:
    """
    Check required fields before a run.

    Returns:
        node id -> human-readable reason, empty if every node is valid
    """
    errors: Dict[str, str] = {}
    for node in nodes:
        message = REQUIRED_FIELD_MESSAGES.get(node.kind)
        if message and not node.payload.strip():
            errors[node.id] = message
    return errors


# ============================================================
# Executors
# ============================================================

class NodeExecutor(ABC):
    """Unit of work for one node kind."""

    kind: NodeKind

    @abstractmethod
    async def execute(
        self,
        node: Node,
        inputs: Sequence[str],
        cancel_token: CancelToken,
    ) -> str:
        """Run the node and return its result."""


class CommandExecutor(NodeExecutor):
    """Runs the node's command text through the shell."""

    kind = NodeKind.COMMAND

    def __init__(self, timeout: Optional[float] = None, cwd: Optional[str] = None):
        self.timeout = timeout
        self.cwd = cwd

    async def execute(self, node: Node, inputs: Sequence[str], cancel_token: CancelToken) -> str:
        cancel_token.raise_if_cancelled(node.id)
        command = substitute_inputs(node.payload, inputs)
        logger.info(f"Running command for node '{node.id}': {command}")

        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
                start_new_session=True,
            )
        except OSError as e:
            raise CommandFailed(
                f"Failed to start command: {e}", stderr=str(e), node_id=node.id
            ) from e

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                proc.communicate(), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            await self._kill(proc)
            raise CommandFailed(
                f"Command timed out after {self.timeout}s", node_id=node.id
            ) from None
        except asyncio.CancelledError:
            await self._kill(proc)
            raise

        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")

        if proc.returncode != 0:
            detail = stderr.strip() or stdout.strip()
            message = f"Command exited with code {proc.returncode}"
            if detail:
                message = f"{message}: {detail}"
            raise CommandFailed(
                message, exit_code=proc.returncode, stderr=stderr, node_id=node.id
            )

        return stdout.rstrip("\n")

    @staticmethod
    async def _kill(proc: "asyncio.subprocess.Process") -> None:
        # Whole group: pipeline members and children hold the output pipes
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        if proc.returncode is None:
            await proc.wait()


class GenerationBackend(ABC):
    """Something that turns a prompt into text."""

    @abstractmethod
    async def generate(self, prompt: str) -> str:
        """Return generated text for ``prompt``."""


class OpenAIBackend(GenerationBackend):
    """Chat-completions backend using the OpenAI async client."""

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ):
        self.model = model
        self.api_key = api_key
        self.base_url = base_url
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client: Optional[openai.AsyncOpenAI] = None

    def _get_client(self) -> openai.AsyncOpenAI:
        # Created lazily so a missing key only fails Generate nodes
        if self._client is None:
            self._client = openai.AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    async def generate(self, prompt: str) -> str:
        try:
            response = await self._get_client().chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except openai.OpenAIError as e:
            raise GenerationFailed(f"Generation request failed: {e}") from e

        if not response.choices or response.choices[0].message.content is None:
            raise GenerationFailed("Generation backend returned no content")
        return response.choices[0].message.content


class GenerateExecutor(NodeExecutor):
    """Sends the node's prompt to a generation backend."""

    kind = NodeKind.GENERATE

    def __init__(self, backend: GenerationBackend):
        self.backend = backend

    async def execute(self, node: Node, inputs: Sequence[str], cancel_token: CancelToken) -> str:
        cancel_token.raise_if_cancelled(node.id)
        prompt = substitute_inputs(node.payload, inputs)
        logger.info(f"Generating for node '{node.id}' ({len(prompt)} chars)")

        try:
            return await self.backend.generate(prompt)
        except GenerationFailed as e:
            e.node_id = node.id
            raise
        except Exception as e:
            raise GenerationFailed(f"Generation failed: {e}", node_id=node.id) from e


class StaticInputExecutor(NodeExecutor):
    """Yields the node's literal content."""

    kind = NodeKind.STATIC_INPUT

    async def execute(self, node: Node, inputs: Sequence[str], cancel_token: CancelToken) -> str:
        return node.payload


class PreviewExecutor(NodeExecutor):
    """Shows what arrived from upstream as its own result."""

    kind = NodeKind.PREVIEW

    async def execute(self, node: Node, inputs: Sequence[str], cancel_token: CancelToken) -> str:
        return "\n".join(inputs)


# ============================================================
# Registry
# ============================================================

class ExecutorRegistry:
    """
    Maps every node kind to its executor.

    Construction fails if any NodeKind is left without an executor, so
    adding a kind without an executor is caught when the registry is built.
    """

    def __init__(self, executors: Iterable[NodeExecutor]):
        self._executors: Dict[NodeKind, NodeExecutor] = {}
        for executor in executors:
            self._executors[executor.kind] = executor

        missing = [kind.value for kind in NodeKind if kind not in self._executors]
        if missing:
            raise ValueError(f"No executor registered for node kinds: {missing}")

    def get(self, kind: NodeKind) -> NodeExecutor:
        return self._executors[NodeKind(kind)]

    async def execute(self, node: Node, inputs: Sequence[str], cancel_token: CancelToken) -> str:
        return await self.get(node.kind).execute(node, inputs, cancel_token)


def default_registry(
    config: Optional[Settings] = None,
    backend: Optional[GenerationBackend] = None,
) -> ExecutorRegistry:
    """Build the standard executors from settings."""
    config = config or default_settings
    if backend is None:
        backend = OpenAIBackend(
            model=config.GENERATION_MODEL,
            api_key=config.OPENAI_API_KEY,
            base_url=config.OPENAI_BASE_URL,
            temperature=config.GENERATION_TEMPERATURE,
            max_tokens=config.GENERATION_MAX_TOKENS,
        )
    return ExecutorRegistry([
        CommandExecutor(timeout=config.COMMAND_TIMEOUT, cwd=config.COMMAND_CWD),
        GenerateExecutor(backend),
        StaticInputExecutor(),
        PreviewExecutor(),
    ])


