import pytest

from schemas import OrderResult, Product
from sheets import OrderSink
from storage import MemoryStorage


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeSink(OrderSink):
    def __init__(self, result=None, error=None):
        self.result = result or OrderResult(success=True)
        self.error = error
        self.orders = []

    async def submit(self, order):
        self.orders.append(order)
        if self.error:
            raise self.error
        return self.result.model_copy(update={"order_id": order.order_id}) if self.result.success else self.result


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def local():
    return MemoryStorage()


@pytest.fixture
def session():
    return MemoryStorage()


@pytest.fixture
def tee():
    return Product(id=1, name="Cotton Tee", price=500, category="Clothing",
                   sizes=["M", "L"], colors=["Red", "Blue"])


@pytest.fixture
def mug():
    return Product(id=2, name="Clay Mug", price=250, category="Home", discount_amount=50)


SHEET = [
    ["id", "name", "price", "description", "images", "rating", "category", "subcategory",
     "discountAmount", "sizes", "colors", "itemsLeft", "commentsAndRatings", "tags"],
    ["1", "Cotton Tee", "500", "Soft tee", "a.jpg, b.jpg", "", "Clothing", "Tops",
     "50", "M, L", "Red, Blue", "4", "Great#rating:5, Okay#rating:4", "adult"],
    ["", "separator row"],
    ["2", "Clay Mug", "abc", "Handmade mug", "", "4.5", "Home", "", "", "", "", "", "", ""],
    ["3", "Kids Cap", "200", "Cap for kids", "cap.jpg", "", "Clothing", "Hats", "", "", "Green", "0", "", "kids"],
]


@pytest.fixture
def sheet():
    return [list(row) for row in SHEET]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def failing_sink():
    return FakeSink(result=OrderResult(success=False, error="Sheet unavailable"))


@pytest.fixture
def unreachable_sink():
    return FakeSink(error=ConnectionError("down"))
