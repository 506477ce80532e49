import threading

import pytest

from ecofinds.shared.utils import NotFoundException, ValidationException


@pytest.fixture
def buyer(make_user):
    return make_user("buyer")


@pytest.fixture
def product(make_user, make_product):
    return make_product(make_user("seller").id, price="10")


def test_adding_same_product_twice_merges_quantities(cart, buyer, product):
    first = cart.add_to_cart(buyer.id, product.id, 2)
    second = cart.add_to_cart(buyer.id, product.id, 3)

    assert second.id == first.id
    assert second.quantity == 5
    assert len(cart.items_for_user(buyer.id)) == 1


def test_lines_are_per_user(cart, make_user, buyer, product):
    other = make_user("other")
    cart.add_to_cart(buyer.id, product.id, 1)
    cart.add_to_cart(other.id, product.id, 1)
    assert len(cart.items_for_user(buyer.id)) == 1
    assert len(cart.items_for_user(other.id)) == 1


@pytest.mark.parametrize("quantity", [0, -1, True, 1.5, "2", None])
def test_add_rejects_non_positive_integers(cart, buyer, product, quantity):
    with pytest.raises(ValidationException):
        cart.add_to_cart(buyer.id, product.id, quantity)
    assert cart.items_for_user(buyer.id) == []


def test_set_quantity_replaces_value(cart, buyer, product):
    line = cart.add_to_cart(buyer.id, product.id, 4)
    updated = cart.set_quantity(line.id, 1)
    assert updated.quantity == 1
    assert cart.get_item(line.id).quantity == 1


def test_set_quantity_on_missing_line(cart):
    with pytest.raises(NotFoundException):
        cart.set_quantity(12, 1)


def test_set_quantity_validates_before_lookup(cart, buyer, product):
    line = cart.add_to_cart(buyer.id, product.id, 4)
    with pytest.raises(ValidationException):
        cart.set_quantity(line.id, 0)
    assert cart.get_item(line.id).quantity == 4


def test_remove_is_idempotent(cart, buyer, product):
    line = cart.add_to_cart(buyer.id, product.id, 1)
    assert cart.remove(line.id) is True
    assert cart.remove(line.id) is False


def test_clear_only_touches_one_user(cart, make_user, buyer, product):
    other = make_user("other")
    cart.add_to_cart(buyer.id, product.id, 1)
    cart.add_to_cart(other.id, product.id, 1)

    assert cart.clear(buyer.id) is True
    assert cart.items_for_user(buyer.id) == []
    assert len(cart.items_for_user(other.id)) == 1


def test_clear_empty_cart_still_succeeds(cart, buyer):
    assert cart.clear(buyer.id) is True


def test_lines_for_deleted_products_read_back_without_product(cart, store, buyer, product):
    cart.add_to_cart(buyer.id, product.id, 2)
    store.delete_product(product.id)

    lines = cart.list_with_products(buyer.id)
    assert len(lines) == 1
    assert lines[0].item.product_id == product.id
    assert lines[0].product is None
    assert lines[0].subtotal == 0


def test_line_subtotal(cart, buyer, product):
    cart.add_to_cart(buyer.id, product.id, 3)
    (line,) = cart.list_with_products(buyer.id)
    assert line.product == product
    assert line.subtotal == 30


def test_concurrent_adds_never_duplicate_a_line(cart, buyer, product):
    barrier = threading.Barrier(16)

    def add():
        barrier.wait()
        cart.add_to_cart(buyer.id, product.id, 1)

    threads = [threading.Thread(target=add) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    lines = cart.items_for_user(buyer.id)
    assert len(lines) == 1
    assert lines[0].quantity == 16
