"""
Compute embeddings for products that have none yet and store them in
product_vectors. Run offline:

    python embed_products.py --batch-size 50 --pause 1.0
"""

import argparse
import logging
import time
from typing import Callable, List

from langchain_core.embeddings import Embeddings
from langchain_openai import OpenAIEmbeddings
from pymongo.database import Database

from assistant import EMBEDDING_MODEL
from database import get_db

logger = logging.getLogger(__name__)

BATCH_SIZE = 50
BATCH_PAUSE = 1.0


def products_without_vectors(db: Database) -> List[dict]:
    embedded = {v["product_id"] for v in db["product_vectors"].find({}, {"product_id": 1})}
    rows = db["products"].find({"name": {"$ne": None}}, {"name": 1, "description": 1})
    return [p for p in rows if str(p["_id"]) not in embedded]


def embedding_input(product: dict) -> str:
    return f"{product['name']}\n\n{product.get('description') or ''}"


def embed_products(
    db: Database,
    embeddings: Embeddings,
    batch_size: int = BATCH_SIZE,
    pause: float = BATCH_PAUSE,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    products = products_without_vectors(db)
    logger.info("Fetched %d products without embeddings", len(products))
    done = 0
    for start in range(0, len(products), batch_size):
        batch = products[start:start + batch_size]
        batch_no = start // batch_size + 1
        logger.info("Embedding batch %d (%d items)", batch_no, len(batch))
        vectors = embeddings.embed_documents([embedding_input(p) for p in batch])
        for p, vector in zip(batch, vectors):
            db["product_vectors"].update_one(
                {"product_id": str(p["_id"])},
                {"$set": {"product_id": str(p["_id"]), "embedding": vector}},
                upsert=True,
            )
        done += len(batch)
        logger.info("Batch %d upserted", batch_no)
        if start + batch_size < len(products):
            sleep(pause)
    return done


def main(argv=None):
    parser = argparse.ArgumentParser(description="Embed products for chat search")
    parser.add_argument("--batch-size", type=int, default=BATCH_SIZE)
    parser.add_argument("--pause", type=float, default=BATCH_PAUSE, help="seconds to wait between batches")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    count = embed_products(get_db(), OpenAIEmbeddings(model=EMBEDDING_MODEL), args.batch_size, args.pause)
    logger.info("All done, %d products embedded", count)


if __name__ == "__main__":
    main()
