# orchestrator.py
"""
the model <-> tools loop.

    await model -> tool calls?  yes -> run them, append results, await model again
                                no  -> the response text is the answer

a round is one batch of tool calls plus the follow-up model call. the
number of rounds is capped so a model that never stops asking for tools
still produces an answer.
"""
import dataclasses
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Iterator, List

import openai

from conversation import Conversation
from errors import ModelRateLimitError, ModelServiceError
from prompts import FALLBACK_ANSWER, ITERATION_LIMIT_ANSWER
from schemas import ToolInvocation
from tools import TOOL_SPECS

logger = logging.getLogger(__name__)


class Orchestrator:
    def __init__(
        self,
        client,
        executor,
        model: str,
        max_iterations: int = 15,
        max_parallel_calls: int = 4,
    ):
        self.client = client
        self.executor = executor
        self.model = model
        self.max_iterations = max_iterations
        self.max_parallel_calls = max_parallel_calls

    def run(self, conversation: Conversation) -> str:
        """drive the loop to the end and return the final answer text"""
        answer = FALLBACK_ANSWER
        for event in self.run_events(conversation):
            if event["type"] == "answer":
                answer = event["content"]
        return answer

    def run_events(self, conversation: Conversation) -> Iterator[dict]:
        """
        drive the loop, yielding progress as it happens.

        yields:
        - {"type": "tool", ...} once per executed tool call, in call order
        - {"type": "answer", "content": str, "rounds": int, "truncated": bool} last

        model failures raise ModelRateLimitError / ModelServiceError and end
        the request; tool failures never do.
        """
        message = self._complete(conversation)
        rounds = 0
        # the freshest bit of prose the model produced, for when we have to cut it off
        partial = message.content or ""

        while message.tool_calls and rounds < self.max_iterations:
            rounds += 1
            invocations = _invocations(message.tool_calls, rounds)
            logger.info(
                "round %d: %d tool call(s): %s",
                rounds,
                len(invocations),
                ", ".join(inv.name for inv in invocations),
            )

            conversation.add_assistant(message.content, invocations)
            results = self._dispatch(invocations)
            for invocation, result in zip(invocations, results):
                conversation.add_tool_result(invocation, result)
                yield {
                    "type": "tool",
                    "round": rounds,
                    "call_id": invocation.id,
                    "tool_name": invocation.name,
                    "arguments": invocation.arguments,
                    "result": json.loads(result.to_text()),
                }

            message = self._complete(conversation)
            if message.content:
                partial = message.content

        truncated = bool(message.tool_calls)
        if truncated:
            logger.warning("stopping after %d tool rounds, model still wants tools", rounds)
            content = partial or ITERATION_LIMIT_ANSWER.format(rounds=rounds)
        else:
            content = message.content or FALLBACK_ANSWER

        yield {"type": "answer", "content": content, "rounds": rounds, "truncated": truncated}

    def _dispatch(self, invocations: List[ToolInvocation]) -> list:
        # calls within one batch are independent; map() keeps results in call order
        if len(invocations) == 1:
            return [self.executor.execute(invocations[0])]
        workers = min(self.max_parallel_calls, len(invocations))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(self.executor.execute, invocations))

    def _complete(self, conversation: Conversation):
        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                messages=conversation.to_messages(),
                tools=list(TOOL_SPECS),
                tool_choice="auto",  # model decides if/when to call tools
            )
        except openai.RateLimitError as e:
            logger.warning("model service rate limited the request")
            raise ModelRateLimitError(str(e)) from e
        except openai.APIError as e:
            logger.error("model service error: %s", e)
            raise ModelServiceError(f"model service error: {e}") from e

        if not resp.choices:
            raise ModelServiceError("model service returned no choices")
        return resp.choices[0].message


def _invocations(tool_calls, round_number: int) -> List[ToolInvocation]:
    """
    parse one batch of tool calls.

    ids must be unique within the batch for the tool turns to line up, so
    missing or repeated ids are replaced with generated ones.
    """
    invocations, seen = [], set()
    for index, tool_call in enumerate(tool_calls):
        invocation = ToolInvocation.from_tool_call(tool_call)
        if not invocation.id or invocation.id in seen:
            invocation = dataclasses.replace(invocation, id=f"call_{round_number}_{index}")
        seen.add(invocation.id)
        invocations.append(invocation)
    return invocations
