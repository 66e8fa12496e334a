import asyncio
import json
import pytest
import os
import sys
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
from storefront.core.store import MemoryStore, PostgresStore
from storefront.models.cart import CartItemCreate, HistoryEntryCreate
from storefront.services.cart import BrowsingHistory, Cart, cart_key, history_key


def product(product_id="p1", quantity=1, moq=1, price=2.5, seller_id="s1"):
    return CartItemCreate(
        product_id=product_id,
        title=f"Product {product_id}",
        price=price,
        quantity=quantity,
        moq=moq,
        seller_id=seller_id,
        seller_name=f"Seller {seller_id}",
    )


@pytest.mark.asyncio
async def test_add_below_moq_stores_moq():
    cart = Cart(MemoryStore(), cart_key("buyer-1"))
    items = await cart.add_item(product(quantity=10, moq=50))
    assert items[0].quantity == 50
    assert (await cart.items())[0].quantity == 50


@pytest.mark.asyncio
async def test_update_never_goes_below_moq():
    cart = Cart(MemoryStore(), cart_key("buyer-1"))
    items = await cart.add_item(product(quantity=60, moq=50))
    updated = await cart.update_quantity(items[0].id, 3)
    assert updated.quantity == 50
    assert await cart.update_quantity("missing", 3) is None


@pytest.mark.asyncio
async def test_adding_same_product_merges_quantities():
    cart = Cart(MemoryStore(), cart_key("buyer-1"))
    await cart.add_item(product(quantity=2))
    items = await cart.add_item(product(quantity=3))
    assert len(items) == 1
    assert items[0].quantity == 5
    assert items[0].id.startswith("cart-")


@pytest.mark.asyncio
async def test_cart_totals_and_seller_groups():
    cart = Cart(MemoryStore(), cart_key("buyer-1"))
    await cart.add_item(product("p1", quantity=2, price=2.5, seller_id="s1"))
    await cart.add_item(product("p2", quantity=1, price=10.0, seller_id="s2"))
    await cart.add_item(product("p3", quantity=4, price=1.0, seller_id="s1"))

    assert await cart.item_count() == 7
    assert await cart.total() == 19.0

    groups = await cart.seller_groups()
    assert [g.seller_id for g in groups] == ["s1", "s2"]
    assert groups[0].subtotal == 9.0
    assert len(groups[0].items) == 2

    lines = await cart.line_items()
    assert [line.product_id for line in lines] == ["p1", "p2", "p3"]


@pytest.mark.asyncio
async def test_remove_and_clear():
    cart = Cart(MemoryStore(), cart_key("buyer-1"))
    items = await cart.add_item(product("p1"))
    await cart.add_item(product("p2"))
    assert await cart.remove_item(items[0].id) is True
    assert await cart.remove_item(items[0].id) is False
    assert [i.product_id for i in await cart.items()] == ["p2"]
    await cart.clear()
    assert await cart.items() == []


@pytest.mark.asyncio
async def test_history_is_bounded_and_deduplicated():
    history = BrowsingHistory(MemoryStore(), history_key("buyer-1"), max_items=20)
    for i in range(25):
        await history.add(HistoryEntryCreate(id=f"p{i}", title=f"Product {i}"))
    await history.add(HistoryEntryCreate(id="p22", title="Product 22"))

    entries = await history.entries()
    ids = [e.id for e in entries]
    assert len(entries) == 20
    assert len(set(ids)) == 20
    assert ids[0] == "p22"
    assert ids[1] == "p24"
    assert "p4" not in ids


@pytest.mark.asyncio
async def test_history_clear():
    history = BrowsingHistory(MemoryStore(), history_key("buyer-1"))
    await history.add(HistoryEntryCreate(id="p1", title="Product 1"))
    await history.clear()
    assert await history.entries() == []


@pytest.mark.asyncio
async def test_memory_store_returns_copies():
    store = MemoryStore()
    default = []
    value = await store.get("missing", default)
    value.append(1)
    assert default == []
    await store.set("k", {"a": [1]})
    loaded = await store.get("k")
    loaded["a"].append(2)
    assert await store.get("k") == {"a": [1]}


class DummyTransaction:
    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        self.conn.in_transaction = True
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.conn.in_transaction = False
        return False


class DummyConn:
    def __init__(self):
        self.rows = {}
        self.in_transaction = False
        self.locked_reads = []

    def transaction(self):
        return DummyTransaction(self)

    async def fetchval(self, query, *args):
        if "FOR UPDATE" in query:
            self.locked_reads.append((args[0], self.in_transaction))
        return self.rows.get(args[0])

    async def execute(self, query, *args):
        if query.strip().startswith("DELETE"):
            self.rows.pop(args[0], None)
        elif "DO NOTHING" in query:
            self.rows.setdefault(args[0], args[1])
        else:
            self.rows[args[0]] = args[1]


@pytest.mark.asyncio
async def test_postgres_store_round_trip():
    conn = DummyConn()
    cart = Cart(PostgresStore(conn), cart_key("buyer-1"))
    await cart.add_item(product(quantity=1, moq=5))
    assert json.loads(conn.rows["cart:buyer-1"])[0]["quantity"] == 5
    assert (await cart.items())[0].quantity == 5
    await cart.clear()
    assert "cart:buyer-1" not in conn.rows


@pytest.mark.asyncio
async def test_postgres_store_ignores_unreadable_value():
    conn = DummyConn()
    conn.rows["history:buyer-1"] = "{not json"
    history = BrowsingHistory(PostgresStore(conn), history_key("buyer-1"))
    assert await history.entries() == []


@pytest.mark.asyncio
async def test_postgres_store_mutations_lock_the_row():
    conn = DummyConn()
    cart = Cart(PostgresStore(conn), cart_key("buyer-1"))
    items = await cart.add_item(product(quantity=3))
    await cart.update_quantity(items[0].id, 7)
    await cart.remove_item(items[0].id)
    await BrowsingHistory(PostgresStore(conn), history_key("buyer-1")).add(
        HistoryEntryCreate(id="p1", title="Product p1", price_min=2.5)
    )

    assert conn.locked_reads == [
        ("cart:buyer-1", True),
        ("cart:buyer-1", True),
        ("cart:buyer-1", True),
        ("history:buyer-1", True),
    ]
    assert json.loads(conn.rows["cart:buyer-1"]) == []


@pytest.mark.asyncio
async def test_unchanged_cart_is_not_rewritten():
    store = MemoryStore()
    cart = Cart(store, cart_key("buyer-1"))
    await cart.add_item(product(quantity=2))

    def fail(value):
        raise AssertionError("nothing should be written")

    store.set = fail
    assert await cart.update_quantity("missing", 5) is None
    assert await cart.remove_item("missing") is False


@pytest.mark.asyncio
async def test_concurrent_adds_are_all_kept():
    cart = Cart(MemoryStore(), cart_key("buyer-1"))
    await asyncio.gather(*(cart.add_item(product(product_id=f"p{i}")) for i in range(5)))
    assert sorted(i.product_id for i in await cart.items()) == [f"p{i}" for i in range(5)]
