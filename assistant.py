"""
Product search chat assistant.

One chat completion decides whether to call the search_products tool. When it
does, the query is embedded, matched against the product vectors, and a
second completion formats the matching product rows for the user.
"""

import json
import logging
import os
from typing import Any, Dict, List

from langchain_core.embeddings import Embeddings
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_openai import ChatOpenAI, OpenAIEmbeddings
from pymongo.database import Database

from database import match_product_vectors, serialize_doc, to_object_id
from errors import AssistantError, InvalidInputError

logger = logging.getLogger(__name__)

CHAT_MODEL = os.getenv("CHAT_MODEL", "gpt-4-turbo")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")

DEFAULT_MATCH_COUNT = 5
TRY_AGAIN_MESSAGE = "Sorry, something went wrong. Please try again."

SEARCH_PRODUCTS_TOOL = {
    "type": "function",
    "function": {
        "name": "search_products",
        "description": "Find products matching a natural-language query",
        "parameters": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "User's search text"},
                "k": {
                    "type": "integer",
                    "description": "Number of results to return",
                    "default": DEFAULT_MATCH_COUNT,
                },
            },
            "required": ["query"],
        },
    },
}

FORMAT_INSTRUCTION = (
    "You now have an array of products, each with `name`, `brand`, and `price`. "
    "Please format your reply as a Markdown bullet list, **with a blank line between each item**. "
    "Each bullet should read: `- Name, Brand: <brand>, Price: $<price>`."
)

PRODUCT_FIELDS = {"name": 1, "brand": 1, "price": 1, "image_url": 1, "stock_quantity": 1}

_MESSAGE_TYPES = {
    "user": HumanMessage,
    "assistant": AIMessage,
    "system": SystemMessage,
}


def to_langchain_messages(messages: List[Dict[str, Any]]) -> List[BaseMessage]:
    converted = []
    for m in messages:
        message_type = _MESSAGE_TYPES.get(m.get("role"))
        if message_type is None:
            raise InvalidInputError(f"Unsupported message role {m.get('role')!r}")
        converted.append(message_type(content=m.get("content") or ""))
    return converted


def message_to_dict(message: BaseMessage) -> Dict[str, Any]:
    result = {"role": "assistant", "content": message.content}
    tool_calls = getattr(message, "tool_calls", None)
    if tool_calls:
        result["tool_calls"] = [
            {"id": c.get("id"), "name": c["name"], "args": c.get("args") or {}} for c in tool_calls
        ]
    return result


class ProductAssistant:
    def __init__(self, llm: BaseChatModel, embeddings: Embeddings, db: Database):
        self.llm = llm
        self.embeddings = embeddings
        self.db = db

    def search_products(self, query: str, k: int = DEFAULT_MATCH_COUNT) -> List[Dict[str, Any]]:
        query_embedding = self.embeddings.embed_query(query)
        matches = match_product_vectors(self.db, query_embedding, k)
        ids = [to_object_id(m["product_id"]) for m in matches]
        rows = self.db["products"].find({"_id": {"$in": [i for i in ids if i]}}, PRODUCT_FIELDS)
        return [serialize_doc(r) for r in rows]

    def reply(self, messages: List[Dict[str, Any]]) -> Dict[str, Any]:
        history = to_langchain_messages(messages)
        try:
            first = self.llm.bind_tools([SEARCH_PRODUCTS_TOOL]).invoke(history)
            call = next((c for c in first.tool_calls if c["name"] == "search_products"), None)
            if call is None:
                return message_to_dict(first)

            args = call.get("args") or {}
            query = args.get("query", "")
            k = int(args.get("k") or DEFAULT_MATCH_COUNT)
            products = self.search_products(query, k)
            logger.info("search_products(%r, k=%d) matched %d products", query, k, len(products))

            second = self.llm.invoke([
                *history,
                first,
                ToolMessage(content=json.dumps(products), tool_call_id=call["id"]),
                SystemMessage(content=FORMAT_INSTRUCTION),
            ])
        except Exception as e:
            logger.exception("Chat request failed: %s", e)
            raise AssistantError(TRY_AGAIN_MESSAGE) from e
        return message_to_dict(second)


def build_assistant(db: Database) -> ProductAssistant:
    return ProductAssistant(
        llm=ChatOpenAI(model=CHAT_MODEL),
        embeddings=OpenAIEmbeddings(model=EMBEDDING_MODEL),
        db=db,
    )
