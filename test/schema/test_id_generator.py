from pytest import raises

from entity_sync import (
    IdGenerator,
    InvalidTypeError,
    NumericIdGenerator,
    UuidIdGenerator,
)


def test_numeric():
    generator = NumericIdGenerator(3)

    for _ in range(50):
        value = generator.generate("Order")
        assert isinstance(value, int)
        assert 100 <= value <= 999


def test_numeric_invalid_length():
    with raises(InvalidTypeError):
        NumericIdGenerator(0)

    with raises(InvalidTypeError):
        NumericIdGenerator("5")  # type: ignore


def test_uuid():
    generator = UuidIdGenerator()

    first = generator.generate()
    second = generator.generate()

    assert isinstance(first, str)
    assert len(first) == 36
    assert first != second


def test_custom():
    calls = []

    def func(namespace, content, options):
        calls.append((namespace, content, options))
        return f"{options['prefix']}-{namespace}"

    generator = IdGenerator(func, {"prefix": "x"})

    assert generator.generate("Order", {"title": "t"}) == "x-Order"
    assert calls == [("Order", {"title": "t"}, {"prefix": "x"})]
