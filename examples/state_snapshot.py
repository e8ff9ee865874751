"""Snapshot a middleware chain's state and restore it into a fresh chain.

Requires an OpenAI API key in the OPENAI_API_KEY environment variable.

    OPENAI_API_KEY=sk-... python examples/state_snapshot.py
"""

import asyncio
import json

from modelware import (
    ChatHistoryMiddleware,
    GenerateParams,
    MemoryHistoryRecorder,
    OpenAIChatModel,
    StateManager,
    StateSnapshot,
    TokenUsageMiddleware,
    chat_history_middleware,
    token_usage_middleware,
)


async def main() -> None:
    recorder = MemoryHistoryRecorder()
    manager = StateManager()
    model = manager.initialize_model(
        OpenAIChatModel.create("gpt-4.1-mini"),
        [token_usage_middleware(), chat_history_middleware(recorder)],
    )

    await model.do_generate(GenerateParams(prompt=[{"role": "user", "content": "Say hello."}]))

    snapshot = await manager.snapshot(model)
    saved = json.dumps(snapshot.to_dict())
    print(f"Saved state: {saved}")

    # Later, possibly in another process.
    restored_manager = StateManager()
    usage = token_usage_middleware()
    history = chat_history_middleware(recorder)
    restored = restored_manager.initialize_model(OpenAIChatModel.create("gpt-4.1-mini"), [usage, history])
    await restored_manager.restore_snapshot(restored, StateSnapshot.from_dict(json.loads(saved)))

    tracker: TokenUsageMiddleware = usage.middleware
    chat: ChatHistoryMiddleware = history.middleware
    print(f"Restored totals: {tracker.totals}")
    print(f"Continuing chat {chat.chat_id} after turn {chat.turn_id}")

    await restored.do_generate(GenerateParams(prompt=[{"role": "user", "content": "And goodbye."}]))
    for message in recorder.messages(chat.chat_id):
        print(f"  [{message.order}] {message.role}: {message.content}")


if __name__ == "__main__":
    asyncio.run(main())
