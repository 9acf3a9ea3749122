"""FastAPI server exposing the ShoppingAgent as an HTTP API, one agent (and Session) per chat."""
import asyncio
import logging
import os
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .session import Option
from .shopping_agent import ShoppingAgent

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Store agents per chat session, oldest first
MAX_CHATS = int(os.getenv("MAX_CHATS", 100))
_chat_agents: dict[str, ShoppingAgent] = {}
_create_lock = asyncio.Lock()


class HistoryMessage(BaseModel):
    role: str
    content: str


class ChatRequest(BaseModel):
    """Incoming chat/message from frontend."""
    message: str
    chat_id: Optional[str] = None
    history: list[HistoryMessage] = []


class ChatCreateResponse(BaseModel):
    chat_id: str


class ChatResponse(BaseModel):
    chat_id: str
    reply: str
    options: Optional[list[Option]] = None
    auto_checkout: bool = False


async def _create_agent() -> ShoppingAgent:
    return await ShoppingAgent.from_settings(log_level=logging.INFO)


async def _close_agent(chat_id: str, agent: ShoppingAgent) -> None:
    try:
        await agent.close()
    except Exception as e:
        logger.error(f"Error closing agent for chat_id {chat_id}: {e}")


async def _evict_oldest() -> None:
    while len(_chat_agents) > MAX_CHATS:
        chat_id = next(iter(_chat_agents))
        agent = _chat_agents.pop(chat_id)
        logger.info(f"Evicting idle chat_id: {chat_id}")
        await _close_agent(chat_id, agent)


async def _get_or_create_agent(chat_id: Optional[str] = None) -> tuple[ShoppingAgent, str]:
    """Get or create the agent for a chat session (least recently used chats are evicted)."""
    if chat_id and chat_id in _chat_agents:
        # Re-insert so dict order tracks recency
        _chat_agents[chat_id] = _chat_agents.pop(chat_id)
        return _chat_agents[chat_id], chat_id

    async with _create_lock:
        # Another request may have created it while we waited
        if chat_id and chat_id in _chat_agents:
            return _chat_agents[chat_id], chat_id

        new_chat_id = chat_id or str(uuid.uuid4())
        agent = await _create_agent()
        _chat_agents[new_chat_id] = agent
        logger.info(f"Created new agent for chat_id: {new_chat_id}")
        await _evict_oldest()
    return agent, new_chat_id


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    logger.info("Shutting down all agents...")
    for chat_id, agent in list(_chat_agents.items()):
        await _close_agent(chat_id, agent)
    _chat_agents.clear()


app = FastAPI(title="Shopping Assistant API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.post("/api/chat/create", response_model=ChatCreateResponse)
async def create_chat() -> ChatCreateResponse:
    """Create a new chat session."""
    _, chat_id = await _get_or_create_agent()
    return ChatCreateResponse(chat_id=chat_id)


@app.post("/api/chat", response_model=ChatResponse)
async def chat(body: ChatRequest) -> ChatResponse:
    """Run one turn for the chat (created on the fly when chat_id is unknown)."""
    if not body.message.strip():
        raise HTTPException(status_code=400, detail="Message is required")

    agent, chat_id = await _get_or_create_agent(body.chat_id)
    try:
        result = await agent.run(body.message, history=[h.model_dump() for h in body.history])
    except Exception as e:
        logger.error(f"Error in chat {chat_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    return ChatResponse(
        chat_id=chat_id,
        reply=result.message,
        options=result.options,
        auto_checkout=result.auto_checkout,
    )


@app.get("/api/chat/{chat_id}/messages")
async def get_messages(chat_id: str):
    """Transcript and current shopping state for a chat."""
    if chat_id not in _chat_agents:
        raise HTTPException(status_code=404, detail="Chat not found")
    agent = _chat_agents[chat_id]
    return {
        "messages": agent.transcript(),
        "options": agent.session.last_options,
        "selected_option_index": agent.session.selected_option_index,
        "selected_quantity": agent.session.selected_quantity,
    }


@app.get("/health")
async def health_check():
    return {"status": "ok", "chats": len(_chat_agents)}


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run("shopagent.api_server:app", host="0.0.0.0", port=port)
