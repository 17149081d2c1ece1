from bson import ObjectId

import generate_embeddings
from embeddings import EmbeddingError


class FlakyEmbedder:
    def __init__(self, fail_on):
        self.fail_on = fail_on
        self.seen = []

    def embed_product(self, name, description):
        self.seen.append(name)
        if name == self.fail_on:
            raise EmbeddingError("Failed to generate embedding")
        return [0.1, 0.2, 0.3]


def test_backfills_only_products_without_embeddings(db, make_product, embedder):
    done = make_product(name="Already Done", embedding=[1.0, 0.0, 0.0])
    todo = make_product(name="Channapatna Toy", description="Lacquered wood")

    success, errors = generate_embeddings.generate_embeddings_for_all_products(db, embedder, delay=0)

    assert (success, errors) == (1, 0)
    assert embedder.calls == ["Channapatna Toy Lacquered wood"]
    assert db["product"].find_one({"_id": ObjectId(todo)})["embedding"] == [0.0, 0.0, 1.0]
    assert db["product"].find_one({"_id": ObjectId(done)})["embedding"] == [1.0, 0.0, 0.0]


def test_failures_are_counted_and_skipped(db, make_product):
    make_product(name="Good One")
    bad = make_product(name="Bad One")
    make_product(name="Another Good")

    embedder = FlakyEmbedder(fail_on="Bad One")
    success, errors = generate_embeddings.generate_embeddings_for_all_products(db, embedder, delay=0)

    assert (success, errors) == (2, 1)
    assert len(embedder.seen) == 3
    assert db["product"].find_one({"_id": ObjectId(bad)})["embedding"] is None


def test_nothing_to_do(db, embedder):
    assert generate_embeddings.generate_embeddings_for_all_products(db, embedder) == (0, 0)
    assert embedder.calls == []


def test_main_fails_without_configuration(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY")
    generate_embeddings.get_settings.cache_clear()
    try:
        assert generate_embeddings.main(["--delay", "0"]) == 1
    finally:
        generate_embeddings.get_settings.cache_clear()
