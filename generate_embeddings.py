"""
Back-fill embeddings for every product that does not have one yet.

Usage: python generate_embeddings.py [--delay SECONDS]
"""
import argparse
import logging
import sys
import time
from typing import Tuple

from pymongo.database import Database
from pymongo.errors import PyMongoError

import database
from config import ConfigError, get_settings
from embeddings import EmbeddingError, ProductEmbedder, get_embedder

logger = logging.getLogger("generate_embeddings")


def generate_embeddings_for_all_products(db: Database, embedder: ProductEmbedder, delay: float = 0.2) -> Tuple[int, int]:
    products = list(db["product"].find({"embedding": None}, {"name": 1, "description": 1}))
    if not products:
        logger.info("No products found to process.")
        return 0, 0

    logger.info("Found %d products without embeddings", len(products))
    success, errors = 0, 0
    for i, product in enumerate(products, start=1):
        name = product.get("name") or ""
        logger.info("[%d/%d] Processing: %s", i, len(products), name)
        try:
            vector = embedder.embed_product(name, product.get("description"))
            db["product"].update_one({"_id": product["_id"]}, {"$set": {"embedding": vector}})
        except (EmbeddingError, PyMongoError) as e:
            errors += 1
            logger.error("  Error generating embedding for %s: %s", product["_id"], e)
            continue
        success += 1
        logger.info("  Saved embedding (%d dims)", len(vector))
        # Stay under the embedding API rate limit.
        if delay and i < len(products):
            time.sleep(delay)

    logger.info("Embedding generation complete: %d succeeded, %d failed, %d total", success, errors, len(products))
    return success, errors


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Generate product embeddings for semantic search")
    parser.add_argument("--delay", type=float, default=0.2, help="seconds to wait between API calls")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    try:
        settings = get_settings()
        db = database.connect(settings.database_url, settings.database_name)
        generate_embeddings_for_all_products(db, get_embedder(), delay=args.delay)
    except (ConfigError, PyMongoError) as e:
        logger.error("Fatal error: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
