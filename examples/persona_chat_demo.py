"""Minimal demonstration: send one message to a running persona chat server."""

from persona_chat.client.api_client import ApiClient
from persona_chat.client.session import ChatSession
from persona_chat.infrastructure.storage.json_store import JsonHistoryStore

if __name__ == "__main__":
    session = ChatSession(ApiClient(), JsonHistoryStore())
    question = "Sir, Python me decorators kaise kaam karte hain?"
    print("User:", question)
    result = session.send("hitesh", question, on_part=lambda m: print("Hitesh:", m.content))
    if result.error is not None:
        print("Error:", result.error.code, result.error.message)
